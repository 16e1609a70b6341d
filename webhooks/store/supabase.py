"""Supabase-backed data store.

Talks to the PostgREST table API (``/rest/v1``) and the GoTrue auth admin
API (``/auth/v1``) with the service role key. Every request is a single
round trip; nothing is cached or retried.

References:
https://postgrest.org/en/stable/references/api/tables_views.html
https://supabase.com/docs/reference/api/introduction
"""

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from webhooks.shared.config import Settings
from webhooks.store.base import (
    AuthUser,
    DataStore,
    Session,
    StoreError,
    UserAlreadyRegisteredError,
)

logger = logging.getLogger(__name__)

_ALREADY_REGISTERED_CODES = {"email_exists", "user_already_exists"}


def _error_message(response: httpx.Response) -> str:
    """Pull a readable message out of a PostgREST/GoTrue error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def _ilike_exact(value: str) -> str:
    """Build an ilike pattern that matches value literally."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"ilike.{escaped}"


class SupabaseStore(DataStore):
    """Data store backed by a Supabase project."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Supabase store.

        Args:
            settings: Application settings with Supabase URL and service role key
            client: Optional preconfigured HTTP client
        """
        super().__init__(settings)
        key = settings.supabase_service_role_key
        self._client = client or httpx.Client(
            base_url=settings.supabase_url.rstrip("/"),
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=settings.store_timeout_seconds,
        )

    def is_available(self) -> bool:
        """Check if the store is configured.

        Returns:
            True if URL and service role key are set
        """
        return bool(self.settings.supabase_url and self.settings.supabase_service_role_key)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise StoreError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"{method} {path} returned a non-JSON body") from e

    def _select_first(self, table: str, columns: str, filters: dict[str, str]) -> dict[str, Any] | None:
        params = {"select": columns, **filters, "limit": "1"}
        rows = self._request("GET", f"/rest/v1/{table}", params=params)
        return rows[0] if rows else None

    # Organizations

    def first_organization_id(self) -> str | None:
        row = self._select_first("organizations", "id", {})
        return row["id"] if row else None

    def organization_exists(self, organization_id: str) -> bool:
        return self._select_first("organizations", "id", {"id": f"eq.{organization_id}"}) is not None

    # Invoice matching

    def find_booking_by_number(self, booking_number: str) -> dict[str, Any] | None:
        return self._select_first(
            "bookings",
            "id,booking_number,assigned_project_id",
            {"booking_number": f"eq.{booking_number}"},
        )

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        return self._select_first("projects", "id", {"id": f"eq.{project_id}"})

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        return self._select_first("jobs", "id", {"id": f"eq.{job_id}"})

    def find_project_by_booking(self, booking_id: str) -> dict[str, Any] | None:
        return self._select_first(
            "projects",
            "id",
            {"booking_id": f"eq.{booking_id}", "status": "neq.cancelled"},
        )

    def search_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        return self._select_first(
            "projects",
            "id,name",
            {"name": f"ilike.*{fragment}*", "status": "neq.cancelled"},
        )

    def search_packings_by_name(self, fragment: str) -> dict[str, Any] | None:
        return self._select_first("packing_projects", "id,name", {"name": f"ilike.*{fragment}*"})

    def search_large_projects_by_name(self, fragment: str) -> dict[str, Any] | None:
        return self._select_first("large_projects", "id,name", {"name": f"ilike.*{fragment}*"})

    def insert_invoice(self, table: str, record: dict[str, Any]) -> str:
        rows = self._request(
            "POST",
            f"/rest/v1/{table}",
            params={"select": "id"},
            json=record,
            headers={"Prefer": "return=representation"},
        )
        if not rows or not isinstance(rows, list) or "id" not in rows[0]:
            raise StoreError(f"Insert into {table} returned no row")
        inserted_id: str = rows[0]["id"]
        return inserted_id

    # Identity

    def find_profile_user_id(self, email: str) -> str | None:
        row = self._select_first("profiles", "user_id", {"email": _ilike_exact(email)})
        return row["user_id"] if row else None

    def list_auth_users(self, page: int, per_page: int) -> list[AuthUser]:
        body = self._request(
            "GET",
            "/auth/v1/admin/users",
            params={"page": str(page), "per_page": str(per_page)},
        )
        users = (body or {}).get("users") or []
        return [AuthUser.model_validate(u) for u in users]

    def create_auth_user(
        self,
        email: str,
        user_metadata: dict[str, Any],
        user_id: str | None = None,
        password: str | None = None,
    ) -> AuthUser:
        attributes: dict[str, Any] = {
            "email": email,
            "email_confirm": True,
            "user_metadata": user_metadata,
        }
        if user_id:
            attributes["id"] = user_id
        if password:
            attributes["password"] = password

        try:
            response = self._client.post("/auth/v1/admin/users", json=attributes)
        except httpx.HTTPError as e:
            raise StoreError(f"Create user failed: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            error_code = None
            try:
                error_code = response.json().get("error_code")
            except (ValueError, AttributeError):
                pass
            if error_code in _ALREADY_REGISTERED_CODES or "already been registered" in message:
                raise UserAlreadyRegisteredError(message, status_code=response.status_code)
            raise StoreError(message, status_code=response.status_code)

        return AuthUser.model_validate(response.json())

    def update_auth_user(
        self,
        user_id: str,
        user_metadata: dict[str, Any] | None = None,
        password: str | None = None,
    ) -> None:
        attributes: dict[str, Any] = {}
        if user_metadata is not None:
            attributes["user_metadata"] = user_metadata
        if password:
            attributes["password"] = password
        self._request("PUT", f"/auth/v1/admin/users/{user_id}", json=attributes)

    def upsert_profile(
        self,
        user_id: str,
        email: str,
        full_name: str | None,
        organization_id: str | None,
    ) -> None:
        existing = self._select_first("profiles", "id", {"user_id": f"eq.{user_id}"})
        if existing:
            changes: dict[str, Any] = {"email": email}
            if full_name:
                changes["full_name"] = full_name
            if organization_id:
                changes["organization_id"] = organization_id
            self._request(
                "PATCH", "/rest/v1/profiles", params={"user_id": f"eq.{user_id}"}, json=changes
            )
        else:
            self._request(
                "POST",
                "/rest/v1/profiles",
                json={
                    "user_id": user_id,
                    "email": email,
                    "full_name": full_name or None,
                    "organization_id": organization_id or None,
                },
            )

    def get_user_roles(self, user_id: str) -> set[str]:
        rows = self._request(
            "GET", "/rest/v1/user_roles", params={"select": "role", "user_id": f"eq.{user_id}"}
        )
        return {row["role"] for row in rows or []}

    def delete_user_roles(self, user_id: str, roles: Iterable[str]) -> None:
        roles = sorted(roles)
        if not roles:
            return
        self._request(
            "DELETE",
            "/rest/v1/user_roles",
            params={"user_id": f"eq.{user_id}", "role": f"in.({','.join(roles)})"},
        )

    def insert_user_roles(
        self, user_id: str, roles: Iterable[str], organization_id: str | None
    ) -> None:
        rows = [
            {"user_id": user_id, "role": role, "organization_id": organization_id}
            for role in sorted(roles)
        ]
        if not rows:
            return
        self._request("POST", "/rest/v1/user_roles", json=rows)

    # Sessions

    def generate_magic_link(self, email: str) -> str:
        body = self._request(
            "POST", "/auth/v1/admin/generate_link", json={"type": "magiclink", "email": email}
        )
        body = body or {}
        # Older GoTrue versions nest link data under "properties"
        token_hash = body.get("hashed_token") or (body.get("properties") or {}).get("hashed_token")
        if not token_hash:
            raise StoreError("Generated link has no hashed token")
        result: str = token_hash
        return result

    def redeem_magic_link(self, token_hash: str) -> Session:
        body = self._request(
            "POST", "/auth/v1/verify", json={"type": "magiclink", "token_hash": token_hash}
        )
        if not body or not body.get("access_token") or not body.get("refresh_token"):
            raise StoreError("Sign-in token exchange returned no session")
        return Session(access_token=body["access_token"], refresh_token=body["refresh_token"])
