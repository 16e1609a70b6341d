"""Receive user create/update pushes from the identity hub."""

import logging
from typing import Any

from pydantic import BaseModel

from webhooks.api import metrics
from webhooks.identity.provisioning import (
    IdentityResolver,
    filter_roles,
    normalize_email,
    sync_roles,
)
from webhooks.shared.config import Settings
from webhooks.store.base import DataStore, StoreError, UserAlreadyRegisteredError

logger = logging.getLogger(__name__)


class UserSyncRequest(BaseModel):
    """Body of POST /receive-user-sync."""

    email: str | None = None
    password: str | None = None
    full_name: str | None = None
    user_id: str | None = None
    organization_id: str | None = None
    roles: list[str] | None = None


class SyncActions(BaseModel):
    password_updated: bool = False
    profile_updated: bool = False
    roles_synced: int = 0


class UserSyncResult(BaseModel):
    success: bool = True
    user_id: str | None = None
    mode: str  # existing, created, existing_recovered, unrecoverable
    actions: SyncActions | None = None
    message: str | None = None
    warning: str | None = None

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class UserSyncError(Exception):
    """Raised when a user could not be synced."""

    def __init__(self, error: str, detail: str | None = None, status_code: int = 500) -> None:
        super().__init__(detail or error)
        self.error = error
        self.detail = detail
        self.status_code = status_code


class UserSyncService:
    """Creates or updates local users pushed by the hub."""

    def __init__(self, settings: Settings, store: DataStore) -> None:
        self.settings = settings
        self.store = store
        self.resolver = IdentityResolver(settings, store)

    def sync(self, request: UserSyncRequest) -> UserSyncResult:
        """Create or update the user described by request.

        Raises:
            UserSyncError: On missing email or a failed write
        """
        if not request.email or not request.email.strip():
            raise UserSyncError("Missing required field: email", status_code=400)

        email = normalize_email(request.email)
        logger.info(f"Receiving user sync request for: {email}")
        logger.info(f"Roles received: {request.roles}")

        try:
            result = self._sync(request, email)
        except UserSyncError:
            metrics.user_sync_requests_total.labels(mode="failed").inc()
            raise
        except StoreError as e:
            metrics.user_sync_requests_total.labels(mode="failed").inc()
            logger.error(f"Error in user sync for {email}: {e.message}")
            raise UserSyncError(e.message) from e
        except Exception as e:
            metrics.user_sync_requests_total.labels(mode="failed").inc()
            logger.exception(f"Unexpected error in user sync for {email}")
            raise UserSyncError("Internal server error", str(e)) from e

        metrics.user_sync_requests_total.labels(mode=result.mode).inc()
        return result

    def _sync(self, request: UserSyncRequest, email: str) -> UserSyncResult:
        role_org_id = request.organization_id or self.store.first_organization_id()

        user_id = self.resolver.find_existing(email)
        if user_id:
            logger.info(f"Updating existing user: {user_id}")
            actions = self._apply(user_id, email, request, role_org_id, update_password=True)
            return UserSyncResult(
                user_id=user_id,
                mode="existing",
                actions=actions,
                message="User synced successfully",
            )

        logger.info(f"Creating new user: {email}")
        metadata = {
            "full_name": request.full_name,
            "synced_from": "eventflow_hub",
            "original_user_id": request.user_id,
            "organization_id": request.organization_id,
        }
        try:
            user = self.store.create_auth_user(
                email=email, user_metadata=metadata, password=request.password
            )
        except UserAlreadyRegisteredError:
            logger.info("User exists but was not found in lookup, attempting recovery")
            user_id = self.resolver.scan_auth_users(email)
            if not user_id:
                logger.warning(f"Could not recover registered user {email}")
                return UserSyncResult(
                    mode="unrecoverable",
                    warning="User exists but could not be found for update",
                )
            logger.info(f"Recovery: found user {user_id}, updating")
            actions = self._apply(
                user_id, email, request, role_org_id, update_password=True, password_required=False
            )
            return UserSyncResult(
                user_id=user_id,
                mode="existing_recovered",
                actions=actions,
                message="User recovered and synced",
            )

        logger.info(f"User created successfully: {user.id}")
        actions = self._apply(user.id, email, request, role_org_id, update_password=False)
        actions.password_updated = bool(request.password)
        return UserSyncResult(
            user_id=user.id,
            mode="created",
            actions=actions,
            message="User created successfully",
        )

    def _apply(
        self,
        user_id: str,
        email: str,
        request: UserSyncRequest,
        role_org_id: str | None,
        update_password: bool,
        password_required: bool = True,
    ) -> SyncActions:
        actions = SyncActions()

        if update_password and request.password:
            try:
                self.store.update_auth_user(user_id, password=request.password)
                actions.password_updated = True
            except StoreError as e:
                logger.error(f"Error updating password for user {user_id}: {e.message}")
                if password_required:
                    raise UserSyncError("Failed to update password", e.message) from e

        try:
            self.store.upsert_profile(user_id, email, request.full_name, request.organization_id)
            actions.profile_updated = True
        except StoreError as e:
            logger.error(f"Error upserting profile for user {user_id}: {e.message}")

        # An empty role list leaves roles untouched
        if request.roles:
            synced = sync_roles(self.store, user_id, filter_roles(request.roles), role_org_id)
            actions.roles_synced = len(synced.roles)

        return actions
