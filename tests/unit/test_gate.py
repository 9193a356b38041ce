"""Unit tests for the per-request authorization gate"""

from unittest.mock import patch

import pytest

from storefront.auth.gate import AuthorizationGate
from storefront.auth.sessions import InMemorySessionRepository, SessionStore
from storefront.auth.tokens import TokenService
from storefront.core.errors import AuthenticationError, AuthorizationError
from tests.utils.helpers import DEFAULT_PASSWORD


@pytest.fixture
def store(test_settings, clock):
    return SessionStore(
        InMemorySessionRepository(),
        TokenService(test_settings, clock=clock),
        test_settings,
        clock=clock.utcnow,
    )


@pytest.fixture
def customer(user_repository):
    return user_repository.create_user("customer@example.com", DEFAULT_PASSWORD, "Casey")


@pytest.fixture
def admin(user_repository):
    return user_repository.create_user("admin@example.com", DEFAULT_PASSWORD, is_admin=True)


def gate_for(store, users, token):
    return AuthorizationGate(store, users, token, ip_address="198.51.100.4")


class TestAnonymous:
    def test_get_user_is_none(self, store, user_repository):
        assert gate_for(store, user_repository, None).get_user() is None

    def test_require_user_raises_authentication_error(self, store, user_repository):
        with pytest.raises(AuthenticationError):
            gate_for(store, user_repository, None).require_user()

    def test_require_admin_is_401_not_403(self, store, user_repository):
        with pytest.raises(AuthenticationError):
            gate_for(store, user_repository, "garbage").require_admin()

    def test_is_admin_false(self, store, user_repository):
        assert gate_for(store, user_repository, None).is_admin() is False


class TestAuthenticated:
    def test_resolves_user(self, store, user_repository, customer):
        token = store.create(customer.id)

        user = gate_for(store, user_repository, token).require_user()

        assert user.id == customer.id
        assert user.email == "customer@example.com"
        assert user.full_name == "Casey"
        assert user.session_id

    def test_non_admin_gets_authorization_error(self, store, user_repository, customer):
        token = store.create(customer.id)

        with pytest.raises(AuthorizationError):
            gate_for(store, user_repository, token).require_admin()

    def test_admin_passes(self, store, user_repository, admin):
        token = store.create(admin.id)
        gate = gate_for(store, user_repository, token)

        assert gate.require_admin().id == admin.id
        assert gate.is_admin() is True

    def test_admin_flag_read_from_profile(self, store, user_repository, customer):
        token = store.create(customer.id)
        assert gate_for(store, user_repository, token).is_admin() is False

        user_repository.set_admin(customer.id, True)

        assert gate_for(store, user_repository, token).is_admin() is True

    def test_revoked_session_is_anonymous(self, store, user_repository, customer):
        token = store.create(customer.id)
        store.delete(token)

        assert gate_for(store, user_repository, token).get_user() is None

    def test_session_of_deleted_user(self, store, user_repository):
        token = store.create("no-such-user")

        assert gate_for(store, user_repository, token).get_user() is None


def test_resolution_is_cached_per_request(store, user_repository, customer):
    token = store.create(customer.id)
    gate = gate_for(store, user_repository, token)

    with patch.object(store, "lookup", wraps=store.lookup) as lookup, \
            patch.object(user_repository, "is_admin", wraps=user_repository.is_admin) as is_admin:
        gate.get_user()
        gate.require_user()
        gate.is_admin()
        gate.is_admin()

    assert lookup.call_count == 1
    assert is_admin.call_count == 1
