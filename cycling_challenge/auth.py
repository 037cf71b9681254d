import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse

from . import garmin, storage
from .config import AUTHORIZE_URL, FRONTEND_URL, GARMIN_CALLBACK_URL, PENDING_TOKEN_MAX, PENDING_TOKEN_TTL_S
from .errors import AuthProviderError, DuplicateKey, MalformedResponse
from .logging_setup import token_tail
from .oauth1 import OAuth1Signer
from .schemas import RegistrationComplete
from .token_store import PendingTokenStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["oauth"])

# request token -> (request token secret, quién inició el login)
request_tokens = PendingTokenStore(PENDING_TOKEN_TTL_S, PENDING_TOKEN_MAX)
# id temporal de registro -> (id Garmin, access token, access token secret), hasta que el usuario da su nombre
pending_registrations = PendingTokenStore(PENDING_TOKEN_TTL_S, PENDING_TOKEN_MAX)


def get_signer() -> OAuth1Signer:
    try:
        return garmin.make_signer()
    except RuntimeError as exc:
        raise HTTPException(500, str(exc))


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    return RedirectResponse(f"{FRONTEND_URL}{path}?{urlencode(params)}", status_code=302)


@router.get("/auth/garmin/start")
def oauth_start(userId: Optional[str] = None, signer: OAuth1Signer = Depends(get_signer)):
    caller = userId or "temp-user"
    try:
        token, secret, authorize_url = garmin.get_request_token(signer, GARMIN_CALLBACK_URL, AUTHORIZE_URL)
    except (AuthProviderError, MalformedResponse) as exc:
        logger.error("Fallo pidiendo request token: %s", exc)
        raise HTTPException(502, f"Garmin rechazó la petición: {exc}")

    request_tokens.put(token, (secret, caller))
    logger.info("Login iniciado por %s, tokens pendientes: %s", caller, len(request_tokens))
    return {"authUrl": authorize_url, "requestToken": token}


@router.get("/garmin-callback")
def oauth_callback(
    oauth_token: Optional[str] = None,
    oauth_verifier: Optional[str] = None,
    signer: OAuth1Signer = Depends(get_signer),
):
    if not oauth_token or not oauth_verifier:
        raise HTTPException(400, "Faltan parámetros OAuth")

    pending = request_tokens.get(oauth_token)
    if pending is None:
        raise HTTPException(400, "Request token no encontrado o caducado")
    secret, caller = pending

    try:
        access_token, access_secret = garmin.get_access_token(signer, oauth_token, secret, oauth_verifier)
        garmin_user_id = garmin.fetch_user_id(signer, access_token, access_secret)
    except (AuthProviderError, MalformedResponse, httpx.HTTPError) as exc:
        logger.error("Fallo canjeando %s: %s", token_tail(oauth_token), exc)
        return _frontend_redirect("/auth/callback", error="oauth_failed")

    request_tokens.pop(oauth_token)

    # Garmin no nos da el nombre: lo pide el frontend antes de crear el usuario
    temp_user_id = str(uuid.uuid4())
    pending_registrations.put(temp_user_id, (garmin_user_id, access_token, access_secret))
    logger.info("Handshake completado para %s (Garmin %s)", caller, garmin_user_id)
    return _frontend_redirect("/auth/name-entry", tempUserId=temp_user_id)


@router.post("/auth/complete-registration")
def complete_registration(body: RegistrationComplete):
    name = body.name.strip()
    if not name:
        raise HTTPException(400, "El nombre es obligatorio")

    tokens = pending_registrations.get(body.temp_user_id)
    if tokens is None:
        raise HTTPException(400, "Registro inválido o caducado")
    garmin_user_id, access_token, access_secret = tokens

    email = body.email or f"{name.replace(' ', '').lower()}@user.local"
    try:
        user, created = storage.upsert_user(
            garmin_user_id=garmin_user_id,
            access_token=access_token,
            access_token_secret=access_secret,
            name=name,
            email=email,
            # los tokens de OAuth 1.0a no caducan
            token_expiry=datetime.now(timezone.utc) + timedelta(days=365),
        )
    except DuplicateKey as exc:
        # el registro pendiente se conserva para reintentar con otro email
        raise HTTPException(409, str(exc))
    pending_registrations.pop(body.temp_user_id)
    logger.info("Usuario %s %s", user.id, "creado" if created else "actualizado")
    return {"success": True, "user": {"id": user.id, "name": user.name, "email": user.email}}


@router.delete("/user/registration", status_code=204)
def delete_registration(userId: Optional[str] = None):
    if not userId:
        raise HTTPException(400, "Falta el parámetro userId")
    if storage.delete_user_by_garmin_id(userId):
        logger.info("Usuario %s dado de baja", userId)
    return Response(status_code=204)
