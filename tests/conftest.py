"""Fixtures compartidas: DB SQLite en memoria, firmador determinista y TestClient."""
from datetime import datetime, timezone
from urllib.parse import unquote

import pytest
from fastapi.testclient import TestClient

from cycling_challenge import auth, storage
from cycling_challenge.oauth1 import OAuth1Signer

REQUEST_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/request_token"
ACCESS_TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/access_token"
FIXED_NONCE = "abc123"
FIXED_TIMESTAMP = 1700000000


def parse_auth_header(header: str) -> dict:
    """'OAuth a="1", b="2"' -> {'a': '1', 'b': '2'} (decodificado)."""
    assert header.startswith("OAuth ")
    result = {}
    for part in header[len("OAuth "):].split(", "):
        key, value = part.split("=", 1)
        result[unquote(key)] = unquote(value.strip('"'))
    return result


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = storage.configure_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def users(db):
    creator, _ = storage.upsert_user(
        garmin_user_id="garmin1", access_token="tok-creator", access_token_secret="sec-creator",
        name="Creator", email="creator@test.com",
    )
    opponent, _ = storage.upsert_user(
        garmin_user_id="garmin2", access_token="tok-opponent", access_token_secret="sec-opponent",
        name="Opponent", email="opponent@test.com",
    )
    return creator, opponent


@pytest.fixture
def signer():
    return OAuth1Signer(
        "test_consumer_key",
        "test_consumer_secret",
        REQUEST_TOKEN_URL,
        ACCESS_TOKEN_URL,
        nonce_factory=lambda: FIXED_NONCE,
        clock=lambda: FIXED_TIMESTAMP,
    )


@pytest.fixture
def client(db, signer):
    from cycling_challenge.main import app

    app.dependency_overrides[auth.get_signer] = lambda: signer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
