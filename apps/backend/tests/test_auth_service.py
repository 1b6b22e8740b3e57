"""
Unit tests for authentication service.
Tests password hashing, JWT tokens and account lookups.
"""
import pytest
from datetime import timedelta

import jwt

from backend.services import auth_service, user_service
from backend.services.errors import ConflictError, NotFoundError


class TestPasswordHashing:
    """Tests for password hashing and verification."""

    def test_hash_password(self):
        """Test password hashing produces different hashes for same password."""
        password = "test_password_123"
        hash1 = auth_service.hash_password(password)
        hash2 = auth_service.hash_password(password)

        # Salted
        assert hash1 != hash2
        assert auth_service.verify_password(password, hash1)
        assert auth_service.verify_password(password, hash2)

    def test_verify_password_incorrect(self):
        password_hash = auth_service.hash_password("test_password_123")

        assert auth_service.verify_password("wrong_password", password_hash) is False
        assert auth_service.verify_password("", password_hash) is False

    def test_verify_password_without_hash(self):
        """Accounts without a stored hash never match."""
        assert auth_service.verify_password("anything", "") is False
        assert auth_service.verify_password("anything", None) is False


class TestJWTTokens:
    """Tests for JWT token creation and verification."""

    def test_token_round_trip(self):
        data = {"user_id": 1, "email": "coach@example.com"}
        token = auth_service.create_access_token(data)

        payload = auth_service.verify_token(token)
        assert payload["user_id"] == 1
        assert payload["email"] == "coach@example.com"
        assert "exp" in payload

    def test_create_token_does_not_mutate_data(self):
        data = {"user_id": 7}
        auth_service.create_access_token(data)
        assert data == {"user_id": 7}

    def test_expired_token(self):
        token = auth_service.create_access_token(
            {"user_id": 1}, expires_delta=timedelta(seconds=-1)
        )
        assert auth_service.verify_token(token) is None

    def test_invalid_token(self):
        assert auth_service.verify_token("not-a-token") is None

    def test_token_signed_with_other_key(self):
        token = jwt.encode({"user_id": 1}, "some-other-secret", algorithm="HS256")
        assert auth_service.verify_token(token) is None


class TestUserAccounts:
    """Tests for user_service account operations."""

    @pytest.mark.asyncio
    async def test_create_user_normalizes_email(self, db_session):
        user_id = await user_service.create_user(
            db_session, email="  Coach@Example.COM ", name="Coach", password_hash="hash"
        )

        user = await user_service.get_user_by_email(db_session, "COACH@example.com")
        assert user["id"] == user_id
        assert user["email"] == "coach@example.com"
        assert user["role"] == "user"
        assert user["password_hash"] == "hash"

        public = await user_service.get_user_by_id(db_session, user_id)
        assert "password_hash" not in public

    @pytest.mark.asyncio
    async def test_create_user_duplicate_email(self, db_session):
        await user_service.create_user(db_session, email="a@example.com", name="A", password_hash="h")

        with pytest.raises(ConflictError):
            await user_service.create_user(db_session, email="A@example.com", name="B", password_hash="h")

    @pytest.mark.asyncio
    async def test_get_user_by_email_missing(self, db_session):
        assert await user_service.get_user_by_email(db_session, "nobody@example.com") is None
        assert await user_service.get_user_by_email(db_session, "") is None

    @pytest.mark.asyncio
    async def test_update_user_roles(self, db_session, make_federation):
        federation = await make_federation()
        user_id = await user_service.create_user(
            db_session, email="staff@example.com", name="Staff", password_hash="h"
        )

        updated = await user_service.update_user_roles(
            db_session, user_id, federation_id=federation.id, federation_role="federation-editor"
        )
        assert updated["federation_id"] == federation.id
        assert updated["federation_role"] == "federation-editor"

        cleared = await user_service.update_user_roles(
            db_session, user_id, role="admin", clear_federation=True
        )
        assert cleared["role"] == "admin"
        assert cleared["federation_id"] is None
        assert cleared["federation_role"] is None

        with pytest.raises(NotFoundError):
            await user_service.update_user_roles(db_session, 999, role="admin")

    @pytest.mark.asyncio
    async def test_list_users_search(self, db_session):
        await user_service.create_user(db_session, email="ana@example.com", name="Ana", password_hash="h")
        await user_service.create_user(db_session, email="ben@example.com", name="Ben", password_hash="h")

        assert [u["name"] for u in await user_service.list_users(db_session)] == ["Ana", "Ben"]
        assert [u["name"] for u in await user_service.list_users(db_session, "BEN")] == ["Ben"]
