# Overview: Pytest coverage for password handling, user creation and bearer sessions.

from datetime import timedelta

import pytest

from commerce.errors import ValidationError
from commerce.extensions import db
from commerce.models import SessionToken
from commerce.services import auth_service, session_service


class TestPasswords:
    @pytest.mark.parametrize("password", ["short1", "allletters", "12345678", None])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(ValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_and_verify(self):
        hashed = auth_service.hash_password("Sunshine42")
        assert hashed != "Sunshine42"
        assert auth_service.verify_password("Sunshine42", hashed)
        assert not auth_service.verify_password("Sunshine43", hashed)

    def test_verify_against_garbage_hash(self):
        assert auth_service.verify_password("Sunshine42", "not-a-bcrypt-hash") is False


class TestUsers:
    def test_create_user_uses_default_credit_limit(self, app, db_session):
        app.config["DEFAULT_CREDIT_LIMIT_CENTS"] = 2500
        try:
            user = auth_service.create_user(username="ada", password="Password123", email="ada@example.com")
        finally:
            app.config["DEFAULT_CREDIT_LIMIT_CENTS"] = 0

        assert user.credit_limit_cents == 2500
        assert user.role == "customer"
        assert user.name == "ada"

    def test_outlet_gets_store_name(self, db_session):
        user = auth_service.create_user(username="kiosk", password="Password123", role="outlet")
        assert user.store_name == "kiosk"

    def test_duplicate_username_or_email(self, db_session, customer):
        with pytest.raises(ValidationError):
            auth_service.create_user(username="customer", password="Password123")
        with pytest.raises(ValidationError):
            auth_service.create_user(username="someone", password="Password123", email="customer@example.com")

    def test_invalid_role(self, db_session):
        with pytest.raises(ValidationError):
            auth_service.create_user(username="root", password="Password123", role="superuser")

    def test_authenticate(self, db_session, customer):
        assert auth_service.authenticate("customer", "Password123").id == customer.id
        assert auth_service.authenticate("customer@example.com", "Password123").id == customer.id
        assert auth_service.authenticate("customer", "Password124") is None
        assert auth_service.authenticate("nobody", "Password123") is None

    def test_inactive_user_cannot_authenticate(self, db_session, customer):
        customer.is_active = False
        db_session.commit()
        assert auth_service.authenticate("customer", "Password123") is None


class TestSessions:
    def test_token_is_stored_hashed(self, db_session, customer):
        session, token = session_service.create_session(customer)
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token
        assert session_service.validate_session(token).id == customer.id

    def test_revoke(self, db_session, customer):
        _, token = session_service.create_session(customer)
        assert session_service.revoke_session(token) is True
        assert session_service.revoke_session(token) is False
        assert session_service.validate_session(token) is None

    def test_expired(self, db_session, customer):
        session, token = session_service.create_session(customer)
        session.expires_at = session.created_at - timedelta(seconds=1)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_deactivated_user_session_is_revoked(self, db_session, customer):
        _, token = session_service.create_session(customer)
        customer.is_active = False
        db_session.commit()

        assert session_service.validate_session(token) is None
        stored = db.session.query(SessionToken).filter_by(token_hash=session_service.hash_token(token)).one()
        assert stored.is_revoked is True
