"""Shared fixtures: an in-memory data store and test settings."""

import uuid
from collections.abc import Iterable
from typing import Any

import pytest

from webhooks.shared.config import Settings
from webhooks.store.base import (
    AuthUser,
    DataStore,
    Session,
    StoreError,
    UserAlreadyRegisteredError,
)


class InMemoryStore(DataStore):
    """DataStore fake backed by plain lists.

    ``calls`` records every method invoked, in order.
    """

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.organizations: list[dict[str, Any]] = []
        self.bookings: list[dict[str, Any]] = []
        self.projects: list[dict[str, Any]] = []
        self.jobs: list[dict[str, Any]] = []
        self.packings: list[dict[str, Any]] = []
        self.large_projects: list[dict[str, Any]] = []
        self.invoices: dict[str, list[dict[str, Any]]] = {
            "project_invoices": [],
            "packing_invoices": [],
        }
        self.profiles: list[dict[str, Any]] = []
        self.auth_users: list[AuthUser] = []
        self.user_roles: list[dict[str, Any]] = []
        self.calls: list[str] = []

        self.insert_error: str | None = None
        self.create_user_error: str | None = None
        self.update_user_error: str | None = None
        self.link_error: str | None = None
        self.session_error: str | None = None
        # Registered by a "concurrent request" when create_auth_user is called
        self.concurrent_user: AuthUser | None = None

    # Helpers for tests

    def add_user(self, email: str, user_id: str | None = None, profile: bool = True) -> str:
        user_id = user_id or str(uuid.uuid4())
        self.auth_users.append(AuthUser(id=user_id, email=email))
        if profile:
            self.profiles.append(
                {"user_id": user_id, "email": email, "full_name": None, "organization_id": None}
            )
        return user_id

    def roles_of(self, user_id: str) -> set[str]:
        return {row["role"] for row in self.user_roles if row["user_id"] == user_id}

    def _record(self, name: str) -> None:
        self.calls.append(name)

    @staticmethod
    def _first(rows: Iterable[dict[str, Any]], **conditions: Any) -> dict[str, Any] | None:
        for row in rows:
            if all(row.get(key) == value for key, value in conditions.items()):
                return row
        return None

    @staticmethod
    def _name_search(
        rows: Iterable[dict[str, Any]], fragment: str, skip_cancelled: bool = False
    ) -> dict[str, Any] | None:
        for row in rows:
            if skip_cancelled and row.get("status") == "cancelled":
                continue
            if fragment.lower() in (row.get("name") or "").lower():
                return row
        return None

    # Organizations

    def first_organization_id(self) -> str | None:
        self._record("first_organization_id")
        return self.organizations[0]["id"] if self.organizations else None

    def organization_exists(self, organization_id: str) -> bool:
        self._record("organization_exists")
        return self._first(self.organizations, id=organization_id) is not None

    # Invoice matching

    def find_booking_by_number(self, booking_number: str) -> dict[str, Any] | None:
        self._record("find_booking_by_number")
        return self._first(self.bookings, booking_number=booking_number)

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        self._record("get_project")
        return self._first(self.projects, id=project_id)

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        self._record("get_job")
        return self._first(self.jobs, id=job_id)

    def find_project_by_booking(self, booking_id: str) -> dict[str, Any] | None:
        self._record("find_project_by_booking")
        for project in self.projects:
            if project.get("booking_id") == booking_id and project.get("status") != "cancelled":
                return project
        return None

    def search_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        self._record("search_projects_by_name")
        return self._name_search(self.projects, fragment, skip_cancelled=True)

    def search_packings_by_name(self, fragment: str) -> dict[str, Any] | None:
        self._record("search_packings_by_name")
        return self._name_search(self.packings, fragment)

    def search_large_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        self._record("search_large_projects_by_name")
        return self._name_search(self.large_projects, fragment)

    def insert_invoice(self, table: str, record: dict[str, Any]) -> str:
        self._record("insert_invoice")
        if self.insert_error:
            raise StoreError(self.insert_error, status_code=400)
        row = {"id": str(uuid.uuid4()), **record}
        self.invoices[table].append(row)
        return row["id"]

    # Identity

    def find_profile_user_id(self, email: str) -> str | None:
        self._record("find_profile_user_id")
        for profile in self.profiles:
            if (profile.get("email") or "").lower() == email.lower():
                return profile["user_id"]
        return None

    def list_auth_users(self, page: int, per_page: int) -> list[AuthUser]:
        self._record("list_auth_users")
        start = (page - 1) * per_page
        return self.auth_users[start : start + per_page]

    def create_auth_user(
        self,
        email: str,
        user_metadata: dict[str, Any],
        user_id: str | None = None,
        password: str | None = None,
    ) -> AuthUser:
        self._record("create_auth_user")
        if self.concurrent_user is not None:
            self.auth_users.append(self.concurrent_user)
            self.concurrent_user = None
        if any((u.email or "").lower() == email.lower() for u in self.auth_users):
            raise UserAlreadyRegisteredError(
                "A user with this email address has already been registered", status_code=422
            )
        if self.create_user_error:
            raise StoreError(self.create_user_error, status_code=500)
        user = AuthUser(id=user_id or str(uuid.uuid4()), email=email, user_metadata=user_metadata)
        self.auth_users.append(user)
        return user

    def update_auth_user(
        self,
        user_id: str,
        user_metadata: dict[str, Any] | None = None,
        password: str | None = None,
    ) -> None:
        self._record("update_auth_user")
        if self.update_user_error:
            raise StoreError(self.update_user_error, status_code=500)
        for user in self.auth_users:
            if user.id == user_id:
                if user_metadata is not None:
                    user.user_metadata = dict(user_metadata)
                return
        raise StoreError(f"User {user_id} not found", status_code=404)

    def upsert_profile(
        self,
        user_id: str,
        email: str,
        full_name: str | None,
        organization_id: str | None,
    ) -> None:
        self._record("upsert_profile")
        profile = self._first(self.profiles, user_id=user_id)
        if profile is None:
            self.profiles.append(
                {
                    "user_id": user_id,
                    "email": email,
                    "full_name": full_name,
                    "organization_id": organization_id,
                }
            )
            return
        profile["email"] = email
        if full_name:
            profile["full_name"] = full_name
        if organization_id:
            profile["organization_id"] = organization_id

    def get_user_roles(self, user_id: str) -> set[str]:
        self._record("get_user_roles")
        return self.roles_of(user_id)

    def delete_user_roles(self, user_id: str, roles: Iterable[str]) -> None:
        self._record("delete_user_roles")
        doomed = set(roles)
        self.user_roles = [
            row
            for row in self.user_roles
            if not (row["user_id"] == user_id and row["role"] in doomed)
        ]

    def insert_user_roles(
        self, user_id: str, roles: Iterable[str], organization_id: str | None
    ) -> None:
        self._record("insert_user_roles")
        for role in roles:
            self.user_roles.append(
                {"user_id": user_id, "role": role, "organization_id": organization_id}
            )

    # Sessions

    def generate_magic_link(self, email: str) -> str:
        self._record("generate_magic_link")
        if self.link_error:
            raise StoreError(self.link_error)
        return f"hashed-{email}"

    def redeem_magic_link(self, token_hash: str) -> Session:
        self._record("redeem_magic_link")
        if self.session_error:
            raise StoreError(self.session_error)
        return Session(access_token=f"access-{token_hash}", refresh_token=f"refresh-{token_hash}")


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_role_key="service-role-key",
        webhook_secret="test-secret",
        sso_hub_verify_url="https://hub.example.com/verify",
    )


@pytest.fixture
def store(settings: Settings) -> InMemoryStore:
    """Create an in-memory store with one organization."""
    store = InMemoryStore(settings)
    store.organizations.append({"id": "org-1"})
    return store
