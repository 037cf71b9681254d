"""Ingesta de pings contra un Garmin falso (httpx.MockTransport)."""
import httpx
import pytest

from cycling_challenge import challenges, ingestion, storage
from cycling_challenge.models import ChallengeType

from .conftest import parse_auth_header, utc

CALLBACK_URL = "https://apis.garmin.com/wellness-api/rest/activities?uploadStartTimeInSeconds=1&token=abc"

PING_ITEMS = [
    {"activityId": 9001, "activityType": "CYCLING", "startTimeLocal": "2026-01-10T08:00:00"},
    {"activityId": 9002, "activityType": "RUNNING", "startTimeLocal": "2026-01-11T08:00:00"},
    {"activityId": 9003, "activityType": "ROAD_BIKING", "startTimeLocal": "2026-01-12T08:00:00Z"},
]

DETAILS = {
    "9001": {"distance": 42500.0, "elevationGain": 350.0, "averageSpeed": 7.5},
    "9003": {"distance": 10000.0},
}


class FakeGarmin:
    def __init__(self, items=None, callback_status=200):
        self.items = PING_ITEMS if items is None else items
        self.callback_status = callback_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/activities"):
            if self.callback_status != 200:
                return httpx.Response(self.callback_status, text="boom")
            return httpx.Response(200, json={"activities": self.items})
        activity_id = request.url.path.rsplit("/", 1)[-1]
        if activity_id in DETAILS:
            return httpx.Response(200, json=DETAILS[activity_id])
        return httpx.Response(404, json={})


@pytest.fixture
def fake():
    return FakeGarmin()


@pytest.fixture
def http(fake):
    with httpx.Client(transport=httpx.MockTransport(fake)) as c:
        yield c


def test_saves_only_new_cycling_activities(users, signer, fake, http):
    creator, _ = users

    saved = ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http)

    assert saved == 2
    assert not storage.activity_exists("9002")
    stored = storage.get_activities(creator.id, utc(2026, 1, 1), utc(2026, 1, 31))
    by_id = {a.garmin_activity_id: a for a in stored}
    assert set(by_id) == {"9001", "9003"}
    ride = by_id["9001"]
    assert ride.distance == pytest.approx(42.5)
    assert ride.elevation_gain == pytest.approx(350.0)
    assert ride.average_speed == pytest.approx(27.0)
    assert storage.as_utc(ride.activity_date) == utc(2026, 1, 10, 8)
    assert by_id["9003"].average_speed is None
    assert by_id["9003"].elevation_gain is None


def test_requests_are_oauth_signed(users, signer, fake, http):
    ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http)

    assert fake.requests
    for request in fake.requests:
        params = parse_auth_header(request.headers["Authorization"])
        assert params["oauth_token"] == "tok-creator"
        assert params["oauth_consumer_key"] == "test_consumer_key"
        assert params["oauth_signature_method"] == "HMAC-SHA1"


def test_repeated_ping_saves_nothing(users, signer, http):
    assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http) == 2
    assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http) == 0


def test_activity_copied_into_active_challenge(users, signer, http):
    creator, opponent = users
    challenge = challenges.create_challenge(
        creator.id, opponent.id, "Enero", ChallengeType.DISTANCE, now=utc(2026, 1, 5)
    )
    challenges.accept_challenge(challenge.id, opponent.id)

    ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http)

    assert storage.activity_exists(f"9001_{challenge.id}")
    assert storage.activity_exists(f"9003_{challenge.id}")
    _, progress = challenges.get_challenge_progress(challenge.id)
    assert progress.creator_value == pytest.approx(52.5)
    assert progress.creator_count == 2


def test_pending_challenge_gets_no_copy(users, signer, http):
    creator, opponent = users
    challenge = challenges.create_challenge(
        creator.id, opponent.id, "Enero", ChallengeType.DISTANCE, now=utc(2026, 1, 5)
    )
    ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http)
    assert not storage.activity_exists(f"9001_{challenge.id}")


def test_missing_details_skips_activity(users, signer):
    items = [{"activityId": 5555, "activityType": "CYCLING", "startTimeLocal": "2026-01-10T08:00:00"}]
    with httpx.Client(transport=httpx.MockTransport(FakeGarmin(items=items))) as c:
        assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=c) == 0
    assert not storage.activity_exists("5555")


def test_incomplete_items_skipped(users, signer):
    items = [{"activityId": 9001, "activityType": "CYCLING"}, {"activityType": "CYCLING"}]
    with httpx.Client(transport=httpx.MockTransport(FakeGarmin(items=items))) as c:
        assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=c) == 0


def test_non_dict_items_skipped(users, signer):
    items = ["basura", 42, None, PING_ITEMS[0]]
    with httpx.Client(transport=httpx.MockTransport(FakeGarmin(items=items))) as c:
        assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=c) == 1
    assert storage.activity_exists("9001")


def test_item_failure_does_not_stop_the_batch(users, signer, monkeypatch):
    calls = []

    def flaky(item, user, signer, client=None):
        calls.append(item)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return object()

    monkeypatch.setattr(ingestion, "process_single_activity", flaky)
    with httpx.Client(transport=httpx.MockTransport(FakeGarmin(items=["basura", PING_ITEMS[0]]))) as c:
        assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=c) == 1
    assert calls == ["basura", PING_ITEMS[0]]


def test_callback_error_is_swallowed(users, signer):
    with httpx.Client(transport=httpx.MockTransport(FakeGarmin(callback_status=500))) as c:
        assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=c) == 0


def test_unknown_user(db, signer, http, fake):
    assert ingestion.process_activity_ping(CALLBACK_URL, "nobody", signer=signer, client=http) == 0
    assert fake.requests == []


def test_user_without_tokens(users, signer, http, fake):
    storage.clear_user_tokens("garmin1")
    assert ingestion.process_activity_ping(CALLBACK_URL, "garmin1", signer=signer, client=http) == 0
    assert fake.requests == []


def test_build_activity_without_distance():
    item = {"activityId": 1, "activityType": "CYCLING", "startTimeLocal": "2026-01-10T08:00:00"}
    activity = ingestion.build_activity(item, {}, user_id=3)
    assert activity.distance == 0
    assert activity.garmin_activity_id == "1"
    assert activity.user_id == 3
