"""
Webhooks de Garmin. Hay que contestar rápido (Garmin corta a los 30 s), así
que la ingesta va a una BackgroundTask y casi todo responde 200.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from . import ingestion, storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _json_or_empty(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        logger.warning("Webhook con cuerpo no JSON en %s", request.url.path)
        return {}
    return data if isinstance(data, dict) else {}


@router.post("/activity")
async def activity_webhook(request: Request, background_tasks: BackgroundTasks):
    data = await _json_or_empty(request)
    ping = data.get("ping")
    if not isinstance(ping, dict):
        return {"ok": True}

    callback_url = ping.get("callbackURL")
    garmin_user_id = ping.get("userId")
    if not callback_url or not garmin_user_id:
        raise HTTPException(400, "Faltan datos del ping")
    garmin_user_id = str(garmin_user_id)

    if storage.get_user_by_garmin_id(garmin_user_id) is None:
        logger.warning("Ping para usuario desconocido: %s", garmin_user_id)
        return {"ok": True}

    background_tasks.add_task(ingestion.process_activity_ping, callback_url, garmin_user_id)
    return {"ok": True, "queued": True}


@router.post("/deregistration")
async def deregistration_webhook(request: Request):
    data = await _json_or_empty(request)
    for dereg in data.get("deregistrations") or []:
        if not isinstance(dereg, dict):
            continue
        garmin_user_id = dereg.get("userId")
        if garmin_user_id and storage.clear_user_tokens(garmin_user_id):
            logger.info("Usuario %s se dio de baja en %s", garmin_user_id, dereg.get("deregistrationTimeStamp"))
    return {"ok": True}


@router.post("/permissions")
async def permissions_webhook(request: Request):
    data = await _json_or_empty(request)
    for perm in data.get("userPermissions") or []:
        if not isinstance(perm, dict):
            continue
        garmin_user_id = perm.get("userId")
        permission = perm.get("userPermission")
        logger.info("Permiso de %s cambiado a %s", garmin_user_id, permission)
        if permission == "NO_PERMISSION" and garmin_user_id and storage.clear_user_tokens(garmin_user_id):
            logger.info("Tokens borrados para %s por NO_PERMISSION", garmin_user_id)
    return {"ok": True}
