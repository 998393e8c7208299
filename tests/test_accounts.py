"""Tests for password management, email verification, logout and user administration."""

from datetime import timedelta

import pytest
from flask_jwt_extended import create_access_token, decode_token

from tradeacademy.models import RevokedToken, User, UserRole, db, hash_token, utcnow
from tradeacademy.utils.exceptions import (
    AuthenticationError, BusinessLogicError, ConflictError, ValidationError
)


@pytest.fixture
def accounts(services):
    return services.accounts


@pytest.mark.unit
class TestAccountService:

    def test_reset_token_is_stored_hashed(self, accounts, user, notifier):
        token = accounts.request_password_reset("TRADER@example.com")

        assert user.password_reset_token == hash_token(token)
        assert user.password_reset_token != token
        assert user.password_reset_expires > utcnow()
        notifier.send_password_reset.assert_called_once_with(user, token, 10)

    def test_unknown_email_sends_nothing(self, accounts, notifier):
        assert accounts.request_password_reset("nobody@example.com") is None
        notifier.send_password_reset.assert_not_called()

    def test_reset_password(self, accounts, user):
        token = accounts.request_password_reset(user.email)

        accounts.reset_password(token, "brand-new-pass")

        assert user.check_password("brand-new-pass")
        assert user.password_reset_token is None
        assert user.password_changed_at is not None
        with pytest.raises(BusinessLogicError) as exc_info:
            accounts.reset_password(token, "another-pass")
        assert exc_info.value.code == "INVALID_TOKEN"

    def test_expired_reset_token(self, accounts, user):
        token = accounts.request_password_reset(user.email)
        user.password_reset_expires = utcnow() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(BusinessLogicError):
            accounts.reset_password(token, "brand-new-pass")
        assert user.check_password("password123")

    def test_change_password(self, accounts, user):
        with pytest.raises(AuthenticationError):
            accounts.change_password(user, "wrong", "brand-new-pass")
        with pytest.raises(ValidationError):
            accounts.change_password(user, "password123", "password123")

        accounts.change_password(user, "password123", "brand-new-pass")
        assert user.check_password("brand-new-pass")

    def test_email_verification(self, accounts, user, notifier):
        token = accounts.start_email_verification(user)
        notifier.send_email_verification.assert_called_once_with(user, token, 48)
        assert user.email_verified is False

        accounts.verify_email(token)

        assert user.email_verified is True
        assert user.email_verification_token is None
        with pytest.raises(BusinessLogicError):
            accounts.verify_email(token)

    def test_expired_verification_token(self, accounts, user):
        token = accounts.start_email_verification(user)
        user.email_verification_expires = utcnow() - timedelta(minutes=1)
        db.session.commit()

        with pytest.raises(BusinessLogicError):
            accounts.verify_email(token)
        assert user.email_verified is False

    def test_tokens_issued_before_password_change_are_revoked(self, accounts, user):
        payload = decode_token(create_access_token(identity=user))
        assert accounts.is_token_revoked(payload) is False

        user.password_changed_at = utcnow() + timedelta(seconds=5)
        db.session.commit()

        assert accounts.is_token_revoked(payload) is True

    def test_revoke_token_is_idempotent(self, accounts, user):
        payload = decode_token(create_access_token(identity=user))

        accounts.revoke_token(user, payload)
        accounts.revoke_token(user, payload)

        assert RevokedToken.query.count() == 1
        assert accounts.is_token_revoked(payload) is True

    def test_admin_cannot_demote_or_delete_self(self, accounts, admin):
        with pytest.raises(BusinessLogicError):
            accounts.update_user(admin, admin, {"role": UserRole.USER})
        with pytest.raises(BusinessLogicError):
            accounts.update_user(admin, admin, {"is_active": False})
        with pytest.raises(BusinessLogicError):
            accounts.delete_user(admin, admin)

        accounts.update_user(admin, admin, {"name": "Ada Lovelace"})
        assert admin.name == "Ada Lovelace"

    def test_email_change_requires_unused_address(self, accounts, admin, user, other_user):
        user.email_verified = True
        db.session.commit()

        with pytest.raises(ConflictError):
            accounts.update_user(admin, user, {"email": other_user.email})

        accounts.update_user(admin, user, {"email": "Renamed@Example.com"})
        assert user.email == "renamed@example.com"
        assert user.email_verified is False


@pytest.mark.api
class TestAccountEndpoints:

    def test_register_sends_verification_email(self, client, notifier):
        response = client.post(
            "/api/users/register",
            json={"email": "new@example.com", "password": "supersecret", "name": "Newbie"},
        )

        assert response.status_code == 201
        assert response.get_json()["data"]["user"]["email_verified"] is False
        assert "email_verification_token" not in response.get_json()["data"]["user"]
        notifier.send_email_verification.assert_called_once()

    def test_verify_email_link(self, client, services, user):
        token = services.accounts.start_email_verification(user)

        response = client.get(f"/api/users/verify-email/{token}")
        assert response.status_code == 200
        assert user.email_verified is True

        again = client.get(f"/api/users/verify-email/{token}")
        assert again.status_code == 400
        assert again.get_json()["error"]["code"] == "INVALID_TOKEN"

    def test_resend_verification(self, client, user, auth_headers, notifier):
        assert client.post("/api/users/verify-email", headers=auth_headers).status_code == 200
        notifier.send_email_verification.assert_called_once()

        user.email_verified = True
        db.session.commit()
        response = client.post("/api/users/verify-email", headers=auth_headers)
        assert response.status_code == 409

    def test_logout_revokes_the_token(self, client, auth_headers):
        response = client.post("/api/users/logout", headers=auth_headers)
        assert response.status_code == 200

        after = client.get("/api/users/me", headers=auth_headers)
        assert after.status_code == 401
        assert after.get_json()["error"]["code"] == "TOKEN_REVOKED"

    def test_update_password(self, client, user, auth_headers):
        wrong = client.patch(
            "/api/users/update-password",
            json={"current_password": "nope", "new_password": "brand-new-pass"},
            headers=auth_headers,
        )
        assert wrong.status_code == 401

        response = client.patch(
            "/api/users/update-password",
            json={"current_password": "password123", "new_password": "brand-new-pass"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        new_token = response.get_json()["token"]

        assert client.get("/api/users/me", headers=auth_headers).status_code == 401
        fresh = client.get("/api/users/me", headers={"Authorization": f"Bearer {new_token}"})
        assert fresh.status_code == 200

        login = client.post(
            "/api/users/login", json={"email": user.email, "password": "brand-new-pass"}
        )
        assert login.status_code == 200

    def test_profile_update_cannot_change_password(self, client, auth_headers):
        response = client.patch("/api/users/me", json={"password": "sneaky-pass"}, headers=auth_headers)

        assert response.status_code == 400

    def test_forgot_and_reset_password(self, client, user, notifier):
        response = client.post("/api/users/forgot-password", json={"email": user.email})
        assert response.status_code == 200
        token = notifier.send_password_reset.call_args.args[1]

        unknown = client.post("/api/users/forgot-password", json={"email": "nobody@example.com"})
        assert unknown.status_code == 200
        assert unknown.get_json()["message"] == response.get_json()["message"]

        reset = client.patch(f"/api/users/reset-password/{token}", json={"password": "brand-new-pass"})
        assert reset.status_code == 200
        assert reset.get_json()["token"]

        reused = client.patch(f"/api/users/reset-password/{token}", json={"password": "other-pass-1"})
        assert reused.status_code == 400

    def test_delete_me_deactivates(self, client, user, auth_headers):
        response = client.delete("/api/users/me", headers=auth_headers)
        assert response.status_code == 204

        assert db.session.get(User, user.id).is_active is False
        assert client.get("/api/users/me", headers=auth_headers).status_code == 401
        login = client.post("/api/users/login", json={"email": user.email, "password": "password123"})
        assert login.status_code == 401


@pytest.mark.api
class TestUserAdministration:

    def test_only_admins_list_users(self, client, user, auth_headers, admin_headers):
        assert client.get("/api/users", headers=auth_headers).status_code == 403

        response = client.get("/api/users?role=admin", headers=admin_headers)
        body = response.get_json()
        assert response.status_code == 200
        assert body["total"] == 1
        assert body["data"][0]["role"] == "admin"
        assert "password_hash" not in body["data"][0]

    def test_private_columns_cannot_be_filtered(self, client, admin_headers):
        response = client.get("/api/users?password_reset_token=abc", headers=admin_headers)

        assert response.status_code == 400

    def test_get_update_and_delete_user(self, client, user, admin_headers):
        fetched = client.get(f"/api/users/{user.id}", headers=admin_headers)
        assert fetched.get_json()["data"]["user"]["email"] == user.email

        updated = client.patch(
            f"/api/users/{user.id}", json={"role": "instructor", "is_premium": True}, headers=admin_headers
        )
        assert updated.status_code == 200
        assert updated.get_json()["data"]["user"]["role"] == "instructor"

        password = client.patch(f"/api/users/{user.id}", json={"password": "x" * 10}, headers=admin_headers)
        assert password.status_code == 400

        user_id = user.id
        assert client.delete(f"/api/users/{user_id}", headers=admin_headers).status_code == 204
        assert db.session.get(User, user_id) is None
        assert client.get(f"/api/users/{user_id}", headers=admin_headers).status_code == 404

    def test_admin_cannot_delete_self(self, client, admin, admin_headers):
        response = client.delete(f"/api/users/{admin.id}", headers=admin_headers)

        assert response.status_code == 400
        assert response.get_json()["error"]["code"] == "SELF_MODIFICATION"
