"""
Tests for token handling and the employee edit window
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from laminates.auth.dependencies import check_edit_window, get_current_user
from laminates.auth.jwt_handler import JWTHandler
from laminates.core.config import Settings
from laminates.core.constants import UserRole
from laminates.core.errors import AccessDeniedError
from laminates.db.models import Quotation, User

# Asia/Kolkata is UTC+05:30 all year
SETTINGS = Settings(edit_window_timezone="Asia/Kolkata", edit_window_start_hour=9, edit_window_end_hour=18,
                    jwt_secret="test-secret")


def _user(role):
    return User(id="u-1", email="u@example.com", user_name="U", hashed_password="x", role=role.value)


def _quotation(created_at):
    return Quotation(id="q-1", created_at=created_at)


class TestEditWindow:

    def test_employee_inside_hours_same_day(self):
        now = datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc)  # 10:30 local
        created = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)  # 09:30 local
        check_edit_window(_user(UserRole.EMPLOYEE), _quotation(created), now=now, settings=SETTINGS)

    def test_employee_outside_hours(self):
        now = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)  # 19:30 local
        created = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)

        with pytest.raises(AccessDeniedError) as exc_info:
            check_edit_window(_user(UserRole.EMPLOYEE), _quotation(created), now=now, settings=SETTINGS)
        assert exc_info.value.details["reason"] == "outside_edit_hours"

    def test_employee_cannot_edit_older_quotation(self):
        now = datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc)
        created = datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc)  # 15:30 local, previous day

        with pytest.raises(AccessDeniedError) as exc_info:
            check_edit_window(_user(UserRole.EMPLOYEE), _quotation(created), now=now, settings=SETTINGS)
        assert exc_info.value.details["reason"] == "not_created_today"

    def test_local_date_is_used_for_same_day(self):
        # 19:00 UTC on the 18th is already 00:30 on the 19th locally
        now = datetime(2026, 10, 19, 5, 0, tzinfo=timezone.utc)
        created = datetime(2026, 10, 18, 19, 0)
        check_edit_window(_user(UserRole.EMPLOYEE), _quotation(created), now=now, settings=SETTINGS)

    def test_admin_is_never_restricted(self):
        now = datetime(2026, 10, 19, 22, 0, tzinfo=timezone.utc)
        created = datetime(2025, 1, 1, tzinfo=timezone.utc)
        check_edit_window(_user(UserRole.ADMIN), _quotation(created), now=now, settings=SETTINGS)


class TestJWTHandler:

    def test_round_trip(self):
        handler = JWTHandler(SETTINGS)
        token = handler.create_access_token("user-123", extra_claims={"role": "ADMIN"})

        payload = handler.verify_token(token)

        assert payload["sub"] == "user-123"
        assert payload["role"] == "ADMIN"

    def test_expired_token_rejected(self):
        handler = JWTHandler(SETTINGS)
        token = handler.create_access_token("user-123", expires_delta=timedelta(seconds=-10))

        with pytest.raises(HTTPException) as exc_info:
            handler.verify_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"

    def test_wrong_secret_rejected(self):
        token = JWTHandler(Settings(jwt_secret="other")).create_access_token("user-123")
        with pytest.raises(HTTPException) as exc_info:
            JWTHandler(SETTINGS).verify_token(token)
        assert exc_info.value.status_code == 401


class TestCurrentUser:

    @pytest.mark.asyncio
    async def test_token_resolves_stored_user(self, test_db, test_user):
        handler = JWTHandler(SETTINGS)
        token = handler.create_access_token(test_user.id)

        user = await get_current_user(db=test_db, token=token, jwt_handler=handler)

        assert user.id == test_user.id

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, test_db):
        handler = JWTHandler(SETTINGS)
        token = handler.create_access_token("no-such-user")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(db=test_db, token=token, jwt_handler=handler)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "User not found"
