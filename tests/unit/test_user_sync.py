"""Unit tests for UserSyncService."""

from unittest.mock import patch

import pytest
from conftest import InMemoryStore

from webhooks.identity.user_sync import UserSyncError, UserSyncRequest, UserSyncService
from webhooks.shared.config import Settings
from webhooks.store.base import AuthUser, UserAlreadyRegisteredError


@pytest.fixture
def service(settings: Settings, store: InMemoryStore) -> UserSyncService:
    """Create user sync service backed by the in-memory store."""
    return UserSyncService(settings, store)


def test_missing_email(service: UserSyncService, store: InMemoryStore) -> None:
    """Test that a request without email is rejected before any lookup."""
    with pytest.raises(UserSyncError) as excinfo:
        service.sync(UserSyncRequest(full_name="No Email"))

    assert excinfo.value.status_code == 400
    assert excinfo.value.error == "Missing required field: email"
    assert store.calls == []


def test_creates_user(service: UserSyncService, store: InMemoryStore) -> None:
    """Test creating a new user with hub metadata and filtered roles."""
    result = service.sync(
        UserSyncRequest(
            email=" Erik@Example.com",
            password="pw",
            full_name="Erik Ek",
            user_id="hub-9",
            roles=["lager", "bogus"],
        )
    )

    assert result.mode == "created"
    assert result.actions is not None
    assert result.actions.password_updated is True
    assert result.actions.profile_updated is True
    assert result.actions.roles_synced == 1

    user = store.auth_users[0]
    assert user.email == "erik@example.com"
    assert user.user_metadata["synced_from"] == "eventflow_hub"
    assert user.user_metadata["original_user_id"] == "hub-9"
    assert store.roles_of(user.id) == {"lager"}
    # Roles fall back to the first organization
    assert store.user_roles[0]["organization_id"] == "org-1"


def test_updates_existing_user(service: UserSyncService, store: InMemoryStore) -> None:
    """Test updating profile and roles of a user found by email."""
    user_id = store.add_user("erik@example.com")
    store.user_roles = [{"user_id": user_id, "role": "admin", "organization_id": "org-1"}]

    result = service.sync(
        UserSyncRequest(email="ERIK@example.com", organization_id="org-2", roles=["projekt"])
    )

    assert result.mode == "existing"
    assert result.user_id == user_id
    assert result.actions is not None
    assert result.actions.password_updated is False
    assert store.roles_of(user_id) == {"projekt"}
    assert store.profiles[0]["organization_id"] == "org-2"
    assert "create_auth_user" not in store.calls


def test_empty_roles_leave_roles_untouched(service: UserSyncService, store: InMemoryStore) -> None:
    """Test that an empty role list does not touch stored roles."""
    user_id = store.add_user("erik@example.com")
    store.user_roles = [{"user_id": user_id, "role": "admin", "organization_id": "org-1"}]

    service.sync(UserSyncRequest(email="erik@example.com", roles=[]))

    assert store.roles_of(user_id) == {"admin"}
    assert "get_user_roles" not in store.calls


def test_recovers_from_registration_conflict(
    service: UserSyncService, store: InMemoryStore
) -> None:
    """Test that a concurrently registered user is found and updated."""
    store.concurrent_user = AuthUser(id="raced", email="erik@example.com")

    result = service.sync(UserSyncRequest(email="erik@example.com"))

    assert result.mode == "existing_recovered"
    assert result.user_id == "raced"


def test_recovery_tolerates_password_failure(
    service: UserSyncService, store: InMemoryStore
) -> None:
    """Test that a failed password update during recovery is reported, not raised."""
    store.concurrent_user = AuthUser(id="raced", email="erik@example.com")
    store.update_user_error = "Password should be at least 6 characters"

    result = service.sync(UserSyncRequest(email="erik@example.com", password="pw"))

    assert result.mode == "existing_recovered"
    assert result.actions is not None
    assert result.actions.password_updated is False
    assert result.actions.profile_updated is True


def test_unrecoverable_conflict(service: UserSyncService, store: InMemoryStore) -> None:
    """Test success with a warning when a registered user cannot be found."""
    conflict = UserAlreadyRegisteredError("User already registered", status_code=422)
    with patch.object(store, "create_auth_user", side_effect=conflict):
        result = service.sync(UserSyncRequest(email="ghost@example.com"))

    body = result.to_response()
    assert body["success"] is True
    assert body["mode"] == "unrecoverable"
    assert "warning" in body
    assert "user_id" not in body


def test_password_update_failure(service: UserSyncService, store: InMemoryStore) -> None:
    """Test that a failed password update for an existing user is a 500."""
    # Profile points at a user the auth store does not know
    store.profiles.append({"user_id": "ghost", "email": "erik@example.com"})

    with pytest.raises(UserSyncError) as excinfo:
        service.sync(UserSyncRequest(email="erik@example.com", password="pw"))

    assert excinfo.value.error == "Failed to update password"
    assert excinfo.value.status_code == 500


def test_unexpected_error(service: UserSyncService, store: InMemoryStore) -> None:
    """Test that unexpected exceptions become a generic sync error."""
    with patch.object(store, "first_organization_id", side_effect=KeyError("id")):
        with pytest.raises(UserSyncError) as excinfo:
            service.sync(UserSyncRequest(email="erik@example.com"))

    assert excinfo.value.error == "Internal server error"
    assert excinfo.value.status_code == 500


def test_response_omits_empty_fields(service: UserSyncService) -> None:
    """Test that the response body leaves out unset fields."""
    body = service.sync(UserSyncRequest(email="new@example.com")).to_response()

    assert body["success"] is True
    assert body["mode"] == "created"
    assert "warning" not in body
    assert body["actions"] == {
        "password_updated": False,
        "profile_updated": True,
        "roles_synced": 0,
    }
