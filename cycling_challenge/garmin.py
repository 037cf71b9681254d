import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import (
    ACCESS_TOKEN_URL, GARMIN_API_URL, GARMIN_CONSUMER_KEY, GARMIN_CONSUMER_SECRET,
    HTTP_TIMEOUT_S, REQUEST_TOKEN_URL,
)
from .errors import AuthProviderError, MalformedResponse
from .logging_setup import token_tail
from .oauth1 import OAuth1Signer, parse_form_encoded_response

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Accept": "*/*", "User-Agent": "CyclingChallenge/1.0"}


def make_signer() -> OAuth1Signer:
    return OAuth1Signer(
        consumer_key=GARMIN_CONSUMER_KEY,
        consumer_secret=GARMIN_CONSUMER_SECRET,
        request_token_url=REQUEST_TOKEN_URL,
        access_token_url=ACCESS_TOKEN_URL,
    )


@contextmanager
def _client(client: Optional[httpx.Client]):
    if client is not None:
        yield client
        return
    with httpx.Client(timeout=HTTP_TIMEOUT_S, headers=DEFAULT_HEADERS) as c:
        yield c


def _post_token_leg(url: str, header: str, client: Optional[httpx.Client]) -> Dict[str, str]:
    with _client(client) as c:
        res = c.post(url, headers={"Authorization": header})
    if not res.is_success:
        raise AuthProviderError(res.status_code, res.text)
    return parse_form_encoded_response(res.text)


def get_request_token(
    signer: OAuth1Signer, callback_url: str, authorize_url: str, client: Optional[httpx.Client] = None
) -> Tuple[str, str, str]:
    """Paso 1: request token. Devuelve (token, secret, url de autorización)."""
    url, header = signer.build_request_token_request(callback_url)
    data = _post_token_leg(url, header, client)
    token = data["oauth_token"]
    redirect = str(httpx.URL(authorize_url, params={"oauth_token": token}))
    logger.info("Request token obtenido %s", token_tail(token))
    return token, data["oauth_token_secret"], redirect


def get_access_token(
    signer: OAuth1Signer,
    request_token: str,
    request_token_secret: str,
    verifier: str,
    client: Optional[httpx.Client] = None,
) -> Tuple[str, str]:
    """Paso 3: canjea request token + verifier por el access token de larga duración."""
    url, header = signer.build_access_token_request(request_token, request_token_secret, verifier)
    data = _post_token_leg(url, header, client)
    logger.info("Access token obtenido %s", token_tail(data["oauth_token"]))
    return data["oauth_token"], data["oauth_token_secret"]


def _signed_get(signer: OAuth1Signer, url: str, token: str, secret: str, client: Optional[httpx.Client]) -> httpx.Response:
    header = signer.build_resource_request("GET", url, token, secret)
    with _client(client) as c:
        return c.get(url, headers={"Authorization": header})


def fetch_ping_activities(
    signer: OAuth1Signer, callback_url: str, token: str, secret: str, client: Optional[httpx.Client] = None
) -> List[Dict[str, Any]]:
    """Lista de actividades que Garmin deja en el callbackURL del ping."""
    res = _signed_get(signer, callback_url, token, secret, client)
    res.raise_for_status()
    payload = res.json()
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        raise MalformedResponse("Respuesta de actividades con formato inesperado")
    return payload.get("activities") or []


def fetch_activity_details(
    signer: OAuth1Signer, activity_id: str, token: str, secret: str, client: Optional[httpx.Client] = None
) -> Optional[Dict[str, Any]]:
    url = f"{GARMIN_API_URL}/activities/{activity_id}"
    try:
        res = _signed_get(signer, url, token, secret, client)
    except httpx.HTTPError as exc:
        logger.error("Error pidiendo detalles de la actividad %s: %s", activity_id, exc)
        return None
    if not res.is_success:
        logger.error("Garmin devolvió %s para la actividad %s", res.status_code, activity_id)
        return None
    return res.json()


def fetch_user_id(signer: OAuth1Signer, token: str, secret: str, client: Optional[httpx.Client] = None) -> str:
    """
    Id estable del usuario en Garmin, el mismo que llega en los pings.
    El access token cambia en cada login, este id no.
    """
    res = _signed_get(signer, f"{GARMIN_API_URL}/user/id", token, secret, client)
    if not res.is_success:
        raise AuthProviderError(res.status_code, res.text)
    try:
        payload = res.json()
    except ValueError as exc:
        raise MalformedResponse("Respuesta de user id no es JSON") from exc
    user_id = payload.get("userId") if isinstance(payload, dict) else None
    if not user_id:
        raise MalformedResponse("Respuesta sin userId")
    return str(user_id)
