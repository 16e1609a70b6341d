"""SSO session bootstrap.

Flow for one verification request:

1. Delegate signature verification to the hub
2. Re-check expiry locally
3. Resolve the organization
4. Find or create the identity by normalized email
5. Overwrite metadata and replace the role set
6. Mint a session through a one-time sign-in token
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from webhooks.api import metrics
from webhooks.identity.provisioning import (
    IdentityResolver,
    filter_roles,
    normalize_email,
    sync_roles,
)
from webhooks.shared.config import Settings
from webhooks.sso.hub import HubClient
from webhooks.sso.schema import (
    SsoError,
    SsoPayload,
    SsoSessionResult,
    SsoUser,
    SsoVerifyRequest,
)
from webhooks.store.base import DataStore, Session, StoreError, UserAlreadyRegisteredError

logger = logging.getLogger(__name__)

TARGET_VIEW_ROLES: dict[str, list[str]] = {
    "warehouse": ["lager"],
    "planning": ["projekt"],
}


def resolve_roles(payload_roles: list[str] | None, target_view: str | None) -> list[str]:
    """Pick the role set to apply.

    An explicit role list from the hub wins. Callers that do not send roles
    get roles derived from the view they asked for, or both views.
    """
    if payload_roles is not None:
        return filter_roles(payload_roles)
    if target_view in TARGET_VIEW_ROLES:
        return TARGET_VIEW_ROLES[target_view]
    return ["projekt", "lager"]


class SsoSessionService:
    """Verifies hub-signed identity assertions and opens local sessions."""

    def __init__(
        self,
        settings: Settings,
        store: DataStore,
        hub: HubClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize SSO service.

        Args:
            settings: Application settings
            store: Data store for organizations, users, roles and sessions
            hub: Hub verification client
            clock: Returns the current unix time
        """
        self.settings = settings
        self.store = store
        self.hub = hub
        self.clock = clock
        self.resolver = IdentityResolver(settings, store)

    def verify(self, request: SsoVerifyRequest) -> SsoSessionResult:
        """Run the full SSO handshake.

        Raises:
            SsoError: On any failure, with error code and HTTP status
        """
        try:
            try:
                result = self._verify(request)
            except SsoError:
                raise
            except StoreError as e:
                logger.error(f"Data store failure during SSO verification: {e.message}")
                raise SsoError("INTERNAL_ERROR", 500, e.message) from e
            except Exception as e:
                logger.exception("Unexpected error during SSO verification")
                raise SsoError("INTERNAL_ERROR", 500, str(e)) from e
        except SsoError as e:
            metrics.sso_verifications_total.labels(result=e.error_code).inc()
            raise
        metrics.sso_verifications_total.labels(result="success").inc()
        return result

    def _verify(self, request: SsoVerifyRequest) -> SsoSessionResult:
        if not request.payload or not request.signature:
            logger.error("Missing payload or signature")
            raise SsoError("MISSING_DATA", 400)

        logger.info(f"Received verification request for: {request.payload.get('email')}")

        verdict = self.hub.verify(request.payload, request.signature)
        if not verdict.valid:
            logger.error(
                f"Hub rejected token for {request.payload.get('email')}: {verdict.error}"
            )
            raise SsoError("INVALID_SIGNATURE", 401, verdict.error)

        try:
            payload = SsoPayload.model_validate(verdict.payload or request.payload)
        except ValidationError as e:
            raise SsoError("INVALID_PAYLOAD", 400, str(e)) from e

        now = int(self.clock())
        if payload.expires_at < now:
            logger.error(f"Token expired at: {payload.expires_at}, current time: {now}")
            raise SsoError("TOKEN_EXPIRED", 401)

        organization_id = self._resolve_organization(payload)
        email = normalize_email(payload.email)
        metadata = {
            "full_name": payload.full_name,
            "organization_id": organization_id,
            "sso_user": True,
        }

        user_id = self._resolve_user(payload, email, metadata)
        roles = resolve_roles(payload.roles, request.target_view)
        self._sync_user(user_id, email, payload, organization_id, metadata, roles)

        session = self._create_session(email)
        logger.info(f"Session created for: {email}")

        return SsoSessionResult(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            user=SsoUser(
                id=user_id,
                email=email,
                organization_id=organization_id,
                full_name=payload.full_name,
            ),
            preferences=payload.preferences,
            roles=roles,
        )

    def _resolve_organization(self, payload: SsoPayload) -> str:
        if payload.organization_id:
            if not self.store.organization_exists(payload.organization_id):
                logger.error(f"Organization not found: {payload.organization_id}")
                raise SsoError(
                    "ORGANIZATION_NOT_FOUND",
                    404,
                    f"Organization {payload.organization_id} does not exist. "
                    "Provision it through organization management first.",
                )
            return payload.organization_id

        if not self.settings.sso_legacy_org_fallback:
            raise SsoError("MISSING_ORGANIZATION", 400, "Payload has no organization_id")

        # TODO: remove once every hub caller sends organization_id
        logger.warning(
            f"DEPRECATED: SSO payload for {payload.email} has no organization_id, "
            "falling back to the first organization"
        )
        organization_id = self.store.first_organization_id()
        if not organization_id:
            raise SsoError("ORGANIZATION_NOT_FOUND", 404, "No organization exists")
        return organization_id

    def _resolve_user(self, payload: SsoPayload, email: str, metadata: dict[str, Any]) -> str:
        user_id = self.resolver.find_existing(email)
        if user_id:
            return user_id

        logger.info(f"User does not exist, creating: {email}")
        try:
            user = self.store.create_auth_user(
                email=email, user_metadata=metadata, user_id=payload.user_id
            )
        except UserAlreadyRegisteredError:
            # Concurrent request created the user between lookup and create
            logger.info(f"User {email} registered concurrently, searching again")
            user_id = self.resolver.scan_auth_users(email)
            if user_id:
                return user_id
            raise SsoError(
                "USER_CREATE_FAILED", 500, "User is registered but could not be found"
            ) from None
        except StoreError as e:
            logger.error(f"Failed to create user: {e.message}")
            raise SsoError("USER_CREATE_FAILED", 500, e.message) from e

        logger.info(f"User created: {user.id}")
        return user.id

    def _sync_user(
        self,
        user_id: str,
        email: str,
        payload: SsoPayload,
        organization_id: str,
        metadata: dict[str, Any],
        roles: list[str],
    ) -> None:
        try:
            self.store.update_auth_user(user_id, user_metadata=metadata)
            self.store.upsert_profile(user_id, email, payload.full_name, organization_id)
        except StoreError as e:
            logger.error(f"Failed to update user {user_id}: {e.message}")
            raise SsoError("USER_UPDATE_FAILED", 500, e.message) from e

        try:
            sync_roles(self.store, user_id, roles, organization_id)
        except StoreError as e:
            logger.error(f"Failed to sync roles for user {user_id}: {e.message}")
            raise SsoError("ROLE_SYNC_FAILED", 500, e.message) from e

    def _create_session(self, email: str) -> Session:
        try:
            token_hash = self.store.generate_magic_link(email)
        except StoreError as e:
            logger.error(f"Failed to generate sign-in link: {e.message}")
            raise SsoError("LINK_GENERATION_FAILED", 500, e.message) from e

        try:
            return self.store.redeem_magic_link(token_hash)
        except StoreError as e:
            logger.error(f"Failed to create session: {e.message}")
            raise SsoError("SESSION_CREATE_FAILED", 500, e.message) from e
