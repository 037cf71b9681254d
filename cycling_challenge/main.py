import logging
from contextlib import asynccontextmanager
from typing import Optional

import sqlalchemy as sa
from fastapi import FastAPI, Request, HTTPException, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import auth, challenges, webhooks
from .config import ADMIN_TOKEN
from .errors import InvalidTransition, NotFound
from .logging_setup import configure_logging
from .models import Challenge, User, as_utc
from .progress import ProgressResult
from .schemas import ChallengeAccept, ChallengeCreate
from .storage import get_db_dep, init_db

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Cycling Challenge", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(webhooks.router)


# ---------- util ----------
def _auth_admin_or_403(request: Request):
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=403, detail="Falta Authorization Bearer")
    token = auth_header.split(" ", 1)[1].strip()
    if token != ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Token inválido")


def _user_ref(user: User) -> dict:
    return {"id": user.id, "name": user.name}


def _challenge_dict(c: Challenge, with_users: bool = True) -> dict:
    data = {
        "id": c.id,
        "name": c.name,
        "type": c.type.value,
        "status": c.status.value,
        "targetValue": c.target_value,
        "startDate": as_utc(c.start_date).isoformat(),
        "endDate": as_utc(c.end_date).isoformat(),
    }
    if with_users:
        data["creator"] = _user_ref(c.creator)
        data["opponent"] = _user_ref(c.opponent)
        data["createdAt"] = as_utc(c.created_at).isoformat()
    return data


def _progress_dict(c: Challenge, p: ProgressResult) -> dict:
    return {
        "challenge": _challenge_dict(c, with_users=False),
        "creator": {**_user_ref(c.creator), "progress": p.creator_value, "activityCount": p.creator_count},
        "opponent": {**_user_ref(c.opponent), "progress": p.opponent_value, "activityCount": p.opponent_count},
        "winner": p.winner_name,
    }


# ---------- Retos ----------
@app.post("/challenges", status_code=201)
def create_challenge(body: ChallengeCreate):
    try:
        challenge_type = challenges.parse_challenge_type(body.type)
        challenge = challenges.create_challenge(
            body.creator_id, body.opponent_id, body.name, challenge_type, body.target_value
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _challenge_dict(challenge)


@app.get("/challenges")
def list_challenges(userId: Optional[int] = None):
    if userId is None:
        raise HTTPException(status_code=400, detail="Falta userId")
    return [_challenge_dict(c) for c in challenges.list_user_challenges(userId)]


@app.post("/challenges/{challenge_id}/accept")
def accept_challenge(challenge_id: int, body: ChallengeAccept):
    try:
        challenge = challenges.accept_challenge(challenge_id, body.user_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _challenge_dict(challenge)


@app.get("/challenges/{challenge_id}/progress")
def challenge_progress(challenge_id: int):
    try:
        challenge, progress = challenges.get_challenge_progress(challenge_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _progress_dict(challenge, progress)


# ---------- Admin ----------
@app.get("/admin/health")
def admin_health(db=Depends(get_db_dep)):
    try:
        # simple ping a la DB
        list(db.execute(sa.text("SELECT 1")))
        return {"ok": True, "db": True}
    except SQLAlchemyError:
        logger.exception("La DB no responde")
        return JSONResponse({"ok": False, "db": False}, status_code=503)


@app.post("/admin/update-statuses")
def update_statuses(request: Request):
    """Barrido periódico: Active → Completed cuando termina el mes."""
    _auth_admin_or_403(request)
    return {"completed": challenges.update_challenge_statuses()}
