"""Abstract interface to the hosted data store.

The handlers never talk to the backend directly; they go through a
``DataStore`` so the same decision logic runs against Supabase in production
and an in-memory fake in tests.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel

from webhooks.shared.config import Settings


class StoreError(Exception):
    """Raised when the data store rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UserAlreadyRegisteredError(StoreError):
    """Raised when creating an auth user whose email is already registered."""


class AuthUser(BaseModel):
    """Identity record from the auth provider."""

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = {}


class Session(BaseModel):
    """Live session minted by the auth provider."""

    access_token: str
    refresh_token: str


class DataStore(ABC):
    """Abstract base class for data store backends.

    Row-returning lookups return the first matching row as a dict, or None.
    Writes raise ``StoreError`` on failure.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize store with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    # Organizations

    @abstractmethod
    def first_organization_id(self) -> str | None:
        """Return the id of the first organization, if any."""

    @abstractmethod
    def organization_exists(self, organization_id: str) -> bool:
        """Check whether an organization with this id exists."""

    # Invoice matching

    @abstractmethod
    def find_booking_by_number(self, booking_number: str) -> dict[str, Any] | None:
        """Find a booking whose booking_number equals the value exactly."""

    @abstractmethod
    def get_project(self, project_id: str) -> dict[str, Any] | None:
        """Fetch a project by id."""

    @abstractmethod
    def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Fetch a job by id."""

    @abstractmethod
    def find_project_by_booking(self, booking_id: str) -> dict[str, Any] | None:
        """Find a non-cancelled project that references the booking."""

    @abstractmethod
    def search_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        """First non-cancelled project whose name contains fragment (case-insensitive)."""

    @abstractmethod
    def search_packings_by_name(self, fragment: str) -> dict[str, Any] | None:
        """First packing job whose name contains fragment (case-insensitive)."""

    @abstractmethod
    def search_large_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        """First large project whose name contains fragment (case-insensitive)."""

    @abstractmethod
    def insert_invoice(self, table: str, record: dict[str, Any]) -> str:
        """Insert an invoice row and return its id.

        Raises:
            StoreError: If the insert fails
        """

    # Identity

    @abstractmethod
    def find_profile_user_id(self, email: str) -> str | None:
        """Find the auth user id of the profile with this email (case-insensitive)."""

    @abstractmethod
    def list_auth_users(self, page: int, per_page: int) -> list[AuthUser]:
        """List one page of auth users (pages start at 1)."""

    @abstractmethod
    def create_auth_user(
        self,
        email: str,
        user_metadata: dict[str, Any],
        user_id: str | None = None,
        password: str | None = None,
    ) -> AuthUser:
        """Create a confirmed auth user.

        Raises:
            UserAlreadyRegisteredError: If the email is already registered
            StoreError: On any other failure
        """

    @abstractmethod
    def update_auth_user(
        self,
        user_id: str,
        user_metadata: dict[str, Any] | None = None,
        password: str | None = None,
    ) -> None:
        """Overwrite metadata and/or password of an auth user."""

    @abstractmethod
    def upsert_profile(
        self,
        user_id: str,
        email: str,
        full_name: str | None,
        organization_id: str | None,
    ) -> None:
        """Create the profile row for a user, or update the one that exists."""

    @abstractmethod
    def get_user_roles(self, user_id: str) -> set[str]:
        """Return the roles currently stored for a user."""

    @abstractmethod
    def delete_user_roles(self, user_id: str, roles: Iterable[str]) -> None:
        """Delete the given role rows for a user."""

    @abstractmethod
    def insert_user_roles(
        self, user_id: str, roles: Iterable[str], organization_id: str | None
    ) -> None:
        """Insert role rows for a user."""

    # Sessions

    @abstractmethod
    def generate_magic_link(self, email: str) -> str:
        """Generate a one-time sign-in link and return its hashed token."""

    @abstractmethod
    def redeem_magic_link(self, token_hash: str) -> Session:
        """Exchange a hashed sign-in token for a live session."""
