"""
Firma OAuth 1.0a (HMAC-SHA1, RFC 5849 §3.4) para el handshake de Garmin Connect.

Todo es puro: sin red ni estado. Nonce y reloj se pueden inyectar para tests.
"""
import base64
import hashlib
import hmac
import secrets
import time
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, unquote_plus, urlsplit, urlunsplit

from .errors import MalformedResponse

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"
REQUIRED_TOKEN_KEYS = ("oauth_token", "oauth_token_secret")
# el puerto por defecto no entra en la URL base de la firma
DEFAULT_PORTS = {"http": 80, "https": 443}

Params = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def percent_encode(value) -> str:
    """RFC 3986: sólo A-Z a-z 0-9 - . _ ~ quedan sin codificar."""
    return quote(str(value), safe="")


def _pairs(params: Params):
    if hasattr(params, "items"):
        return list(params.items())
    return list(params)


def normalize_parameters(params: Params) -> str:
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in _pairs(params))
    return "&".join(f"{k}={v}" for k, v in encoded)


def signature_base_string(http_method: str, url: str, params: Params) -> str:
    return "&".join([
        http_method.upper(),
        percent_encode(url),
        percent_encode(normalize_parameters(params)),
    ])


def compute_signature(
    http_method: str,
    url: str,
    params: Params,
    consumer_secret: str,
    token_secret: Optional[str] = "",
) -> str:
    """base64(HMAC-SHA1(clave, base string)). Sin token, la clave acaba en '&'."""
    base = signature_base_string(http_method, url, params)
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret or '')}"
    digest = hmac.new(key.encode("utf-8"), base.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def build_authorization_header(oauth_params: Mapping[str, str]) -> str:
    items = sorted((percent_encode(k), percent_encode(v)) for k, v in oauth_params.items())
    return "OAuth " + ", ".join(f'{k}="{v}"' for k, v in items)


def parse_form_encoded_response(body: str) -> Dict[str, str]:
    """
    Parsea el cuerpo x-www-form-urlencoded que devuelve Garmin en ambos pasos.
    Exige exactamente un '=' por par y que estén oauth_token y oauth_token_secret.
    """
    if not body or not body.strip():
        raise MalformedResponse("Respuesta vacía del proveedor OAuth")

    result: Dict[str, str] = {}
    for pair in body.strip().split("&"):
        parts = pair.split("=")
        if len(parts) != 2:
            raise MalformedResponse(f"Par mal formado en la respuesta: {pair!r}")
        result[unquote_plus(parts[0])] = unquote_plus(parts[1])

    missing = [k for k in REQUIRED_TOKEN_KEYS if k not in result]
    if missing:
        raise MalformedResponse(f"Faltan campos en la respuesta: {', '.join(missing)}")
    return result


class OAuth1Signer:
    """Construye las peticiones firmadas del handshake de tres patas."""

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        request_token_url: str,
        access_token_url: str,
        nonce_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not consumer_key or not consumer_secret:
            raise RuntimeError("Faltan GARMIN_CONSUMER_KEY o GARMIN_CONSUMER_SECRET")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.request_token_url = request_token_url
        self.access_token_url = access_token_url
        self._nonce = nonce_factory or (lambda: secrets.token_hex(16))
        self._clock = clock or time.time

    def _oauth_params(self, **extra: str) -> Dict[str, str]:
        params = {
            "oauth_consumer_key": self.consumer_key,
            "oauth_nonce": self._nonce(),
            "oauth_signature_method": SIGNATURE_METHOD,
            "oauth_timestamp": str(int(self._clock())),
            "oauth_version": OAUTH_VERSION,
        }
        params.update(extra)
        return params

    def _sign(self, method: str, url: str, oauth_params: Dict[str, str],
              token_secret: str = "", query: Iterable[Tuple[str, str]] = ()) -> str:
        signed = dict(oauth_params)
        signed["oauth_signature"] = compute_signature(
            method, url, list(oauth_params.items()) + list(query),
            self.consumer_secret, token_secret,
        )
        return build_authorization_header(signed)

    def build_request_token_request(self, callback_url: str) -> Tuple[str, str]:
        params = self._oauth_params(oauth_callback=callback_url)
        return self.request_token_url, self._sign("POST", self.request_token_url, params)

    def build_access_token_request(
        self, request_token: str, request_token_secret: str, verifier: str
    ) -> Tuple[str, str]:
        params = self._oauth_params(oauth_token=request_token, oauth_verifier=verifier)
        header = self._sign("POST", self.access_token_url, params, request_token_secret)
        return self.access_token_url, header

    def build_resource_request(self, method: str, url: str, token: str, token_secret: str) -> str:
        """
        Cabecera para una llamada a la API con el access token del usuario.
        La query entra en la firma; la URL base va sin query ni fragmento.
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        netloc = parts.hostname or ""
        if parts.port is not None and parts.port != DEFAULT_PORTS.get(scheme):
            netloc = f"{netloc}:{parts.port}"
        base_url = urlunsplit((scheme, netloc, parts.path or "/", "", ""))
        query = parse_qsl(parts.query, keep_blank_values=True)
        params = self._oauth_params(oauth_token=token)
        return self._sign(method, base_url, params, token_secret, query)
