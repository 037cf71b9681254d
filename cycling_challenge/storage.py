# cycling_challenge/storage.py

import logging
from typing import Optional, List, Tuple
from datetime import datetime, timedelta, timezone

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL
from .errors import DuplicateKey, NotFound
from .models import Base, User, Challenge, Activity, ChallengeStatus, as_utc

logger = logging.getLogger(__name__)

# --- Config DB --------------------------------------------------------------


def _normalize_url(url: str) -> str:
    # Normaliza el URI para psycopg3 si viene en formato 'postgres://'
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def _make_engine(url: str) -> sa.Engine:
    url = _normalize_url(url)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # una sola conexión compartida, si no cada sesión ve una DB vacía
            kwargs["poolclass"] = StaticPool
        return sa.create_engine(url, **kwargs)
    return sa.create_engine(url, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db() -> None:
    """Crea las tablas si no existen (no migra tipos existentes)."""
    Base.metadata.create_all(bind=engine)


def configure_engine(url: str) -> sa.Engine:
    """Reapunta la app a otra base de datos (tests, scripts)."""
    global engine
    engine = _make_engine(url)
    SessionLocal.configure(bind=engine)
    init_db()
    return engine


# --- Helpers ----------------------------------------------------------------


def get_db_dep():
    """
    Dependencia para FastAPI (cierre automático).
    Úsala como: db=Depends(get_db_dep)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_utc_datetime(value) -> datetime:
    """Convierte epoch/int/str/datetime a datetime con tz=UTC."""
    if value is None:
        raise ValueError("datetime requerido")
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        # Soporta 'Z'
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"Tipo no soportado para fecha: {type(value)}")


# --- Usuarios ---------------------------------------------------------------


def get_user(user_id: int) -> Optional[User]:
    db = SessionLocal()
    try:
        return db.get(User, user_id)
    finally:
        db.close()


def get_user_by_garmin_id(garmin_user_id: str) -> Optional[User]:
    db = SessionLocal()
    try:
        return db.query(User).filter(User.garmin_user_id == garmin_user_id).one_or_none()
    finally:
        db.close()


def upsert_user(
    *,
    garmin_user_id: str,
    access_token: str,
    access_token_secret: str,
    name: str,
    email: str,
    token_expiry: Optional[datetime] = None,
) -> Tuple[User, bool]:
    """
    Guarda/actualiza el usuario y sus tokens. Devuelve (usuario, creado).
    Si el email ya es de otro usuario lanza DuplicateKey.
    """
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.garmin_user_id == garmin_user_id).one_or_none()
        created = user is None
        if user is None:
            user = User(garmin_user_id=garmin_user_id)
            db.add(user)
        user.access_token = access_token
        user.access_token_secret = access_token_secret
        user.token_expiry = token_expiry
        user.name = name
        user.email = email
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateKey(f"El email {email} ya está registrado") from exc
        return user, created
    finally:
        db.close()


def clear_user_tokens(garmin_user_id: str) -> bool:
    """Borra los tokens (deregistro o permiso retirado). True si el usuario existía."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.garmin_user_id == garmin_user_id).one_or_none()
        if not user:
            return False
        user.access_token = ""
        user.access_token_secret = ""
        user.token_expiry = datetime.now(timezone.utc) - timedelta(days=1)
        db.commit()
        return True
    finally:
        db.close()


def delete_user_by_garmin_id(garmin_user_id: str) -> bool:
    """Elimina el usuario con sus actividades y los retos en los que participa."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.garmin_user_id == garmin_user_id).one_or_none()
        if not user:
            return False
        challenge_ids = [
            cid for (cid,) in db.query(Challenge.id).filter(
                sa.or_(Challenge.creator_id == user.id, Challenge.opponent_id == user.id)
            )
        ]
        if challenge_ids:
            db.query(Activity).filter(Activity.challenge_id.in_(challenge_ids)).delete(synchronize_session=False)
            db.query(Challenge).filter(Challenge.id.in_(challenge_ids)).delete(synchronize_session=False)
        db.query(Activity).filter(Activity.user_id == user.id).delete(synchronize_session=False)
        db.delete(user)
        db.commit()
        return True
    finally:
        db.close()


# --- Retos ------------------------------------------------------------------


def create_challenge_row(challenge: Challenge) -> Challenge:
    db = SessionLocal()
    try:
        db.add(challenge)
        db.commit()
        challenge_id = challenge.id
    finally:
        db.close()
    return get_challenge(challenge_id)


def get_challenge(challenge_id: int) -> Challenge:
    db = SessionLocal()
    try:
        challenge = db.get(Challenge, challenge_id)
        if challenge is None:
            raise NotFound(f"Reto {challenge_id} no encontrado")
        return challenge
    finally:
        db.close()


def list_challenges_for_user(user_id: int) -> List[Challenge]:
    db = SessionLocal()
    try:
        return (
            db.query(Challenge)
            .filter(sa.or_(Challenge.creator_id == user_id, Challenge.opponent_id == user_id))
            .order_by(Challenge.created_at.desc(), Challenge.id.desc())
            .all()
        )
    finally:
        db.close()


def save_challenge_status(challenge_id: int, status: ChallengeStatus) -> None:
    db = SessionLocal()
    try:
        challenge = db.get(Challenge, challenge_id)
        if challenge is None:
            raise NotFound(f"Reto {challenge_id} no encontrado")
        challenge.status = status
        db.commit()
    finally:
        db.close()


def expired_active_challenges(now: datetime) -> List[Challenge]:
    db = SessionLocal()
    try:
        return (
            db.query(Challenge)
            .filter(Challenge.status == ChallengeStatus.ACTIVE, Challenge.end_date < as_utc(now))
            .all()
        )
    finally:
        db.close()


def active_challenges_for(user_id: int, when: datetime) -> List[Challenge]:
    """Retos activos del usuario cuya ventana contiene 'when'."""
    when = as_utc(when)
    db = SessionLocal()
    try:
        return (
            db.query(Challenge)
            .filter(
                sa.or_(Challenge.creator_id == user_id, Challenge.opponent_id == user_id),
                Challenge.status == ChallengeStatus.ACTIVE,
                Challenge.start_date <= when,
                Challenge.end_date >= when,
            )
            .all()
        )
    finally:
        db.close()


# --- Actividades ------------------------------------------------------------


def activity_exists(garmin_activity_id: str) -> bool:
    db = SessionLocal()
    try:
        q = db.query(Activity.id).filter(Activity.garmin_activity_id == garmin_activity_id)
        return db.query(q.exists()).scalar()
    finally:
        db.close()


def insert_activity(activity: Activity, db: Optional[Session] = None) -> Activity:
    """
    Inserta una actividad. Nunca actualiza: si el id externo ya existe lanza DuplicateKey.
    """
    close_session = False
    if db is None:
        db = SessionLocal()
        close_session = True

    try:
        activity.activity_date = as_utc(activity.activity_date)
        db.add(activity)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateKey(f"Actividad {activity.garmin_activity_id} ya existe") from exc
        return activity
    finally:
        if close_session:
            db.close()


def get_activities(user_id: int, from_date: datetime, to_date: datetime) -> List[Activity]:
    """
    Actividades 'crudas' (sin las copias por reto) del usuario en [from_date, to_date].
    """
    db = SessionLocal()
    try:
        return (
            db.query(Activity)
            .filter(
                Activity.user_id == user_id,
                Activity.challenge_id.is_(None),
                Activity.activity_date >= as_utc(from_date),
                Activity.activity_date <= as_utc(to_date),
            )
            .order_by(Activity.activity_date.asc())
            .all()
        )
    finally:
        db.close()
