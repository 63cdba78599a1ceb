"""
Tests for the credential session store.
"""

import asyncio

import pytest

from api.credentials import (
    CredentialsNotFoundError,
    check_all_credentials,
    credentials_status,
    get_guest_credentials,
    get_user_credentials,
    mark_credentials_invalid,
    store_credentials,
)
from api.database import Credential


class TestStoreCredentials:

    def test_stored_encrypted(self, db_session, sample_credentials):
        row = db_session.query(Credential).filter_by(user_id="user-1").one()

        assert "driver@example.com" not in row.encrypted_email
        assert row.encrypted_email.count(":") == 3
        assert row.is_valid is True

    def test_round_trip_cleans_cookie_prefix(self, db_session, sample_credentials):
        creds = get_user_credentials(db_session, "user-1")

        assert creds.email == "driver@example.com"
        assert creds.cookie == "session-cookie-value"
        assert creds.csrf_token == "csrf-token-value"

    def test_upsert_replaces_and_revalidates(self, db_session, sample_credentials):
        mark_credentials_invalid(db_session, "user-1", "expired")
        store_credentials(db_session, "user-1", "new@example.com", "fresh-cookie")

        assert db_session.query(Credential).count() == 1
        creds = get_user_credentials(db_session, "user-1")
        assert creds.cookie == "fresh-cookie"
        assert creds.csrf_token == ""
        assert credentials_status(db_session, "user-1")["is_valid"] is True

    def test_repr_hides_secrets(self, db_session, sample_credentials):
        creds = get_user_credentials(db_session, "user-1")
        assert "session-cookie-value" not in repr(creds)
        assert "driver@example.com" not in repr(creds)


class TestGetCredentials:

    def test_not_found(self, db_session):
        with pytest.raises(CredentialsNotFoundError, match="user-9"):
            get_user_credentials(db_session, "user-9")

    def test_guest_uses_valid_row(self, db_session, sample_credentials):
        store_credentials(db_session, "user-2", "other@example.com", "other-cookie")
        mark_credentials_invalid(db_session, "user-2", "expired")

        assert get_guest_credentials(db_session).cookie == "session-cookie-value"

    def test_guest_without_valid_rows(self, db_session):
        with pytest.raises(CredentialsNotFoundError):
            get_guest_credentials(db_session)

    def test_status_when_not_connected(self, db_session):
        assert credentials_status(db_session, "nobody")["connected"] is False


class TestCheckAllCredentials:

    def test_counts_and_updates_rows(self, db_session):
        store_credentials(db_session, "good", "g@example.com", "good-cookie")
        store_credentials(db_session, "stale", "s@example.com", "stale-cookie")
        store_credentials(db_session, "corrupt", "c@example.com", "corrupt-cookie")
        corrupt = db_session.query(Credential).filter_by(user_id="corrupt").one()
        corrupt.encrypted_session_cookie = "not:valid"
        db_session.commit()

        async def verifier(cookie, csrf_token):
            if cookie == "good-cookie":
                return True, None
            return False, "Redirected to login"

        counts = asyncio.run(check_all_credentials(db_session, verifier))

        assert counts == {"valid": 1, "expired": 1, "errors": 1}
        stale = db_session.query(Credential).filter_by(user_id="stale").one()
        assert stale.is_valid is False
        assert stale.validation_error == "Redirected to login"
        assert db_session.query(Credential).filter_by(user_id="good").one().is_valid is True

    def test_verifier_exception_does_not_abort_batch(self, db_session):
        store_credentials(db_session, "a", "a@example.com", "boom")
        store_credentials(db_session, "b", "b@example.com", "ok")

        async def verifier(cookie, csrf_token):
            if cookie == "boom":
                raise RuntimeError("network down")
            return True, None

        counts = asyncio.run(check_all_credentials(db_session, verifier))
        assert counts == {"valid": 1, "expired": 0, "errors": 1}
