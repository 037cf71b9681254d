"""
Ciclo de vida de los retos mensuales.

Estados: Pending → Active → Completed. Cancelled existe en el modelo pero
ninguna operación lleva a él.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from . import storage
from .errors import InvalidTransition, NotFound
from .models import Challenge, ChallengeStatus, ChallengeType
from .progress import ProgressResult, compute_progress

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[ChallengeStatus, List[ChallengeStatus]] = {
    ChallengeStatus.PENDING: [ChallengeStatus.ACTIVE],
    ChallengeStatus.ACTIVE: [ChallengeStatus.COMPLETED],
    ChallengeStatus.COMPLETED: [],
    ChallengeStatus.CANCELLED: [],
}


def can_transition(current: ChallengeStatus, target: ChallengeStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def validate_transition(current: ChallengeStatus, target: ChallengeStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(f"El reto no puede pasar de '{current.value}' a '{target.value}'")


def parse_challenge_type(value: str) -> ChallengeType:
    """'distance', 'Distance', 'AVERAGESPEED'... Sin distinguir mayúsculas."""
    for member in ChallengeType:
        if member.value.lower() == (value or "").strip().lower():
            return member
    raise ValueError(f"Tipo de reto inválido: {value}")


def month_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Primer día del mes (UTC) hasta un segundo antes del primer día del mes siguiente."""
    now = storage.as_utc(now or datetime.now(timezone.utc))
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        next_start = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(seconds=1)


def create_challenge(
    creator_id: int,
    opponent_id: int,
    name: str,
    challenge_type: ChallengeType,
    target_value: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Challenge:
    if not name or not name.strip():
        raise ValueError("El nombre del reto es obligatorio")
    if creator_id == opponent_id:
        raise ValueError("No puedes retarte a ti mismo")
    for user_id in (creator_id, opponent_id):
        if storage.get_user(user_id) is None:
            raise NotFound(f"Usuario {user_id} no encontrado")

    start, end = month_window(now)
    challenge = storage.create_challenge_row(Challenge(
        name=name.strip(),
        type=ChallengeType(challenge_type),
        status=ChallengeStatus.PENDING,
        target_value=target_value,
        start_date=start,
        end_date=end,
        creator_id=creator_id,
        opponent_id=opponent_id,
    ))
    logger.info("Reto %s creado: %s vs %s (%s)", challenge.id, creator_id, opponent_id, challenge.type.value)
    return challenge


def accept_challenge(challenge_id: int, user_id: int) -> Challenge:
    """Sólo el retado puede aceptar, y sólo si el reto sigue pendiente."""
    challenge = storage.get_challenge(challenge_id)
    if challenge.opponent_id != user_id:
        raise InvalidTransition("Sólo el usuario retado puede aceptar este reto")
    validate_transition(challenge.status, ChallengeStatus.ACTIVE)

    storage.save_challenge_status(challenge_id, ChallengeStatus.ACTIVE)
    logger.info("Reto %s aceptado por %s", challenge_id, user_id)
    return storage.get_challenge(challenge_id)


def list_user_challenges(user_id: int) -> List[Challenge]:
    return storage.list_challenges_for_user(user_id)


def get_challenge_progress(challenge_id: int) -> Tuple[Challenge, ProgressResult]:
    challenge = storage.get_challenge(challenge_id)
    creator_acts = storage.get_activities(challenge.creator_id, challenge.start_date, challenge.end_date)
    opponent_acts = storage.get_activities(challenge.opponent_id, challenge.start_date, challenge.end_date)
    return challenge, compute_progress(challenge, creator_acts, opponent_acts)


def update_challenge_statuses(now: Optional[datetime] = None) -> int:
    """Pasa a Completed los retos activos cuya ventana ya terminó. Idempotente."""
    now = now or datetime.now(timezone.utc)
    expired = storage.expired_active_challenges(now)
    for challenge in expired:
        validate_transition(challenge.status, ChallengeStatus.COMPLETED)
        storage.save_challenge_status(challenge.id, ChallengeStatus.COMPLETED)
    if expired:
        logger.info("Retos completados: %s", [c.id for c in expired])
    return len(expired)
