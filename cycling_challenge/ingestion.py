"""
Ingesta de actividades a partir de los pings de Garmin.

Se ejecuta como tarea en segundo plano: cualquier fallo se loguea y se
descarta, el webhook ya respondió.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from . import garmin, storage
from .errors import DuplicateKey, MalformedResponse
from .models import Activity, User
from .oauth1 import OAuth1Signer
from .progress import is_cycling_activity

logger = logging.getLogger(__name__)


def _float_or_none(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def build_activity(item: Dict[str, Any], details: Dict[str, Any], user_id: int) -> Activity:
    """Mapea el JSON de Garmin a Activity (m → km, m/s → km/h)."""
    distance_m = _float_or_none(details, "distance") or 0.0
    speed_ms = _float_or_none(details, "averageSpeed")
    return Activity(
        garmin_activity_id=str(item["activityId"]),
        activity_type=item["activityType"],
        distance=distance_m / 1000.0,
        elevation_gain=_float_or_none(details, "elevationGain"),
        average_speed=speed_ms * 3.6 if speed_ms is not None else None,
        activity_date=storage.to_utc_datetime(item["startTimeLocal"]),
        user_id=user_id,
    )


def assign_to_challenges(activity: Activity) -> List[Activity]:
    """Crea una copia de la actividad por cada reto activo que la contiene."""
    copies = []
    for challenge in storage.active_challenges_for(activity.user_id, activity.activity_date):
        copy = Activity(
            garmin_activity_id=f"{activity.garmin_activity_id}_{challenge.id}",
            activity_type=activity.activity_type,
            distance=activity.distance,
            elevation_gain=activity.elevation_gain,
            average_speed=activity.average_speed,
            activity_date=activity.activity_date,
            user_id=activity.user_id,
            challenge_id=challenge.id,
        )
        try:
            copies.append(storage.insert_activity(copy))
        except DuplicateKey:
            logger.debug("Copia %s ya existe, se ignora", copy.garmin_activity_id)
    return copies


def process_single_activity(item: Dict[str, Any], user: User, signer: OAuth1Signer,
                            client: Optional[httpx.Client] = None) -> Optional[Activity]:
    if not isinstance(item, dict):
        logger.warning("Actividad con formato inesperado: %r", item)
        return None
    activity_id = item.get("activityId")
    activity_type = item.get("activityType")
    start = item.get("startTimeLocal")
    if not activity_id or not activity_type or not start:
        logger.warning("Datos de actividad incompletos: %s", item)
        return None

    if not is_cycling_activity(activity_type):
        logger.debug("Actividad %s ignorada, no es ciclismo: %s", activity_id, activity_type)
        return None

    if storage.activity_exists(str(activity_id)):
        logger.debug("Actividad %s ya existe, se ignora", activity_id)
        return None

    details = garmin.fetch_activity_details(
        signer, str(activity_id), user.access_token, user.access_token_secret, client
    )
    if details is None:
        logger.error("No se pudieron obtener los detalles de la actividad %s", activity_id)
        return None

    try:
        activity = storage.insert_activity(build_activity(item, details, user.id))
    except DuplicateKey:
        # otra entrega del mismo ping nos ganó la carrera
        logger.debug("Actividad %s insertada en paralelo, se ignora", activity_id)
        return None

    assign_to_challenges(activity)
    logger.info("Actividad %s procesada para %s", activity_id, user.name)
    return activity


def process_activity_ping(callback_url: str, garmin_user_id: str,
                          signer: Optional[OAuth1Signer] = None,
                          client: Optional[httpx.Client] = None) -> int:
    """Descarga las actividades del ping y guarda las nuevas. Devuelve cuántas se guardaron."""
    user = storage.get_user_by_garmin_id(garmin_user_id)
    if user is None or not user.access_token:
        logger.warning("Ping para usuario desconocido o sin tokens: %s", garmin_user_id)
        return 0

    try:
        signer = signer or garmin.make_signer()
        items = garmin.fetch_ping_activities(
            signer, callback_url, user.access_token, user.access_token_secret, client
        )
    except (httpx.HTTPError, MalformedResponse, ValueError, RuntimeError) as exc:
        logger.error("Error descargando actividades de %s: %s", callback_url, exc)
        return 0

    saved = 0
    for item in items:
        try:
            if process_single_activity(item, user, signer, client) is not None:
                saved += 1
        except Exception:
            logger.exception("Error procesando la actividad %r", item)
    return saved
