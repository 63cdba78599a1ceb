"""
Tests for database models.
"""

import pytest
from sqlalchemy.exc import IntegrityError


class TestCredentialModel:
    """Test the Credential model."""

    def test_user_id_unique(self, db_session):
        from api.database import Credential

        db_session.add(Credential(user_id="u1", encrypted_email="a", encrypted_session_cookie="b"))
        db_session.commit()

        db_session.add(Credential(user_id="u1", encrypted_email="c", encrypted_session_cookie="d"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_defaults(self, db_session):
        from api.database import Credential

        row = Credential(user_id="u2", encrypted_email="a", encrypted_session_cookie="b")
        db_session.add(row)
        db_session.commit()

        assert row.is_valid is True
        assert row.encrypted_csrf_token is None
        assert row.created_at is not None


class TestSearchCriteriaModel:
    """Test the SearchCriteria model."""

    def test_create_criteria(self, db_session, sample_criteria):
        assert sample_criteria.id is not None
        assert sample_criteria.active is True
        assert sample_criteria.is_backhaul is False
        assert sample_criteria.deleted_at is None
        assert sample_criteria.scan_status is None

    def test_found_loads_cascade_delete(self, db_session, sample_criteria):
        from api.database import FoundLoad

        db_session.add(FoundLoad(criteria_id=sample_criteria.id, marketplace_load_id="L1", details={"id": "L1"}))
        db_session.commit()

        db_session.delete(sample_criteria)
        db_session.commit()

        assert db_session.query(FoundLoad).count() == 0


class TestFoundLoadModel:
    """Test the FoundLoad model."""

    def test_details_json_round_trip(self, db_session, sample_criteria):
        from api.database import FoundLoad

        load = FoundLoad(
            criteria_id=sample_criteria.id,
            marketplace_load_id="L1",
            details={"id": "L1", "rate": 2500.0, "missing_fields": ["weight"]},
        )
        db_session.add(load)
        db_session.commit()
        db_session.refresh(load)

        assert load.details["missing_fields"] == ["weight"]
        assert load.scan_count == 1
        assert load.status == "found"

    def test_unique_per_criteria(self, db_session, sample_criteria):
        from api.database import FoundLoad

        db_session.add(FoundLoad(criteria_id=sample_criteria.id, marketplace_load_id="L1"))
        db_session.commit()

        db_session.add(FoundLoad(criteria_id=sample_criteria.id, marketplace_load_id="L1"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_same_load_under_two_criteria(self, db_session, sample_criteria):
        """The same marketplace load may match several criteria."""
        from api.database import FoundLoad, SearchCriteria

        other = SearchCriteria(user_id="user-1", origin_city="Gary", origin_state="IN")
        db_session.add(other)
        db_session.commit()

        db_session.add(FoundLoad(criteria_id=sample_criteria.id, marketplace_load_id="L1"))
        db_session.add(FoundLoad(criteria_id=other.id, marketplace_load_id="L1"))
        db_session.commit()

        assert db_session.query(FoundLoad).count() == 2


class TestInterestedAndBackhaulModels:
    """Test saved loads and backhaul suggestions."""

    def test_interested_unique_per_user(self, db_session):
        from api.database import InterestedLoad

        db_session.add(InterestedLoad(user_id="u1", marketplace_load_id="L1"))
        db_session.commit()
        db_session.add(InterestedLoad(user_id="u1", marketplace_load_id="L1", status="trash"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_suggestion_unique_per_saved_load(self, db_session):
        from api.database import SuggestedBackhaul

        db_session.add(SuggestedBackhaul(user_id="u1", saved_load_marketplace_id="L1"))
        db_session.commit()
        db_session.add(SuggestedBackhaul(user_id="u1", saved_load_marketplace_id="L1"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_suggestion_defaults(self, db_session):
        from api.database import SuggestedBackhaul

        row = SuggestedBackhaul(user_id="u1", saved_load_marketplace_id="L2")
        db_session.add(row)
        db_session.commit()

        assert row.status == "pending"
        assert row.loads_found == 0


class TestAsUtc:
    def test_naive_datetime_gets_utc(self):
        from datetime import datetime, timezone
        from api.database import as_utc

        assert as_utc(datetime(2026, 1, 1, 12, 0)).tzinfo == timezone.utc
        assert as_utc(None) is None
