"""Tests de la capa de persistencia."""
from datetime import datetime, timezone

import pytest

from cycling_challenge import storage
from cycling_challenge.errors import DuplicateKey, NotFound
from cycling_challenge.models import Activity, ChallengeStatus

from .conftest import utc


def _activity(garmin_id, user_id, when, challenge_id=None):
    return Activity(
        garmin_activity_id=garmin_id,
        activity_type="CYCLING",
        distance=10.0,
        activity_date=when,
        user_id=user_id,
        challenge_id=challenge_id,
    )


class TestDateHelpers:
    def test_naive_becomes_utc(self):
        assert storage.as_utc(datetime(2026, 1, 1)) == utc(2026, 1, 1)

    @pytest.mark.parametrize("value", [
        "2026-01-02T08:00:00Z",
        "2026-01-02T08:00:00",
        "2026-01-02T09:00:00+01:00",
        1767340800,
    ])
    def test_to_utc_datetime(self, value):
        assert storage.to_utc_datetime(value) == utc(2026, 1, 2, 8)

    def test_to_utc_datetime_rejects_none(self):
        with pytest.raises(ValueError):
            storage.to_utc_datetime(None)

    def test_postgres_url_normalized(self):
        assert storage._normalize_url("postgres://u:p@h/db") == "postgresql+psycopg://u:p@h/db"


class TestUsers:
    def test_upsert_creates_then_updates(self, db):
        user, created = storage.upsert_user(
            garmin_user_id="g1", access_token="a1", access_token_secret="s1", name="Old", email="old@x.com"
        )
        assert created
        again, created = storage.upsert_user(
            garmin_user_id="g1", access_token="a1", access_token_secret="s2", name="New", email="new@x.com"
        )
        assert not created
        assert again.id == user.id
        assert again.access_token_secret == "s2"
        assert storage.get_user_by_garmin_id("g1").name == "New"

    def test_upsert_email_taken_by_other_user(self, users):
        with pytest.raises(DuplicateKey):
            storage.upsert_user(
                garmin_user_id="garmin3", access_token="a3", access_token_secret="s3",
                name="Otro", email="creator@test.com",
            )
        assert storage.get_user_by_garmin_id("garmin3") is None
        # la sesión se recupera tras el rollback
        _, created = storage.upsert_user(
            garmin_user_id="garmin3", access_token="a3", access_token_secret="s3",
            name="Otro", email="otro@test.com",
        )
        assert created

    def test_clear_tokens(self, users):
        assert storage.clear_user_tokens("garmin1")
        user = storage.get_user_by_garmin_id("garmin1")
        assert user.access_token == ""
        assert user.access_token_secret == ""
        assert storage.as_utc(user.token_expiry) < datetime.now(timezone.utc)
        assert not storage.clear_user_tokens("nobody")

    def test_delete_user_removes_activities(self, users):
        creator, _ = users
        storage.insert_activity(_activity("1", creator.id, utc(2026, 1, 2)))
        assert storage.delete_user_by_garmin_id("garmin1")
        assert storage.get_user_by_garmin_id("garmin1") is None
        assert not storage.activity_exists("1")
        assert not storage.delete_user_by_garmin_id("garmin1")


class TestActivities:
    def test_insert_duplicate_raises(self, users):
        creator, _ = users
        storage.insert_activity(_activity("123", creator.id, utc(2026, 1, 2)))
        with pytest.raises(DuplicateKey):
            storage.insert_activity(_activity("123", creator.id, utc(2026, 1, 3)))
        assert storage.activity_exists("123")

    def test_get_activities_window_and_raw_only(self, users):
        creator, opponent = users
        storage.insert_activity(_activity("a", creator.id, utc(2026, 1, 1)))
        storage.insert_activity(_activity("b", creator.id, utc(2026, 1, 31, 23, 59, 59)))
        storage.insert_activity(_activity("c", creator.id, utc(2026, 2, 1)))
        storage.insert_activity(_activity("a_1", creator.id, utc(2026, 1, 1), challenge_id=1))
        storage.insert_activity(_activity("d", opponent.id, utc(2026, 1, 10)))

        found = storage.get_activities(creator.id, utc(2026, 1, 1), utc(2026, 1, 31, 23, 59, 59))
        assert [a.garmin_activity_id for a in found] == ["a", "b"]


class TestChallengesStorage:
    def test_get_missing_challenge(self, db):
        with pytest.raises(NotFound):
            storage.get_challenge(1)

    def test_save_status_missing_challenge(self, db):
        with pytest.raises(NotFound):
            storage.save_challenge_status(1, ChallengeStatus.ACTIVE)
