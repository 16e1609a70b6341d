"""Local identity provisioning shared by the SSO and user sync handlers.

Users are keyed by normalized email, never by the upstream user id: the hub
may issue a new id for the same person.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from webhooks.shared.config import Settings
from webhooks.store.base import DataStore

logger = logging.getLogger(__name__)

VALID_ROLES: tuple[str, ...] = ("admin", "forsaljning", "projekt", "lager")


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address."""
    return email.strip().lower()


def filter_roles(roles: Iterable[str]) -> list[str]:
    """Keep known roles, dropping unknown values and duplicates.

    Returns:
        Valid roles in canonical order
    """
    requested = set()
    for role in roles:
        if role in VALID_ROLES:
            requested.add(role)
        else:
            logger.warning(f"Invalid role ignored: {role}")
    return [role for role in VALID_ROLES if role in requested]


@dataclass
class RoleSyncResult:
    """Roles changed by a sync."""

    roles: list[str]
    added: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)


class IdentityResolver:
    """Finds existing auth identities by email."""

    def __init__(self, settings: Settings, store: DataStore) -> None:
        self.settings = settings
        self.store = store

    def find_existing(self, normalized_email: str) -> str | None:
        """Look up a user id by profile email, then by scanning auth users.

        Args:
            normalized_email: Email already passed through normalize_email

        Returns:
            Auth user id, or None if no identity has this email
        """
        user_id = self.store.find_profile_user_id(normalized_email)
        if user_id:
            logger.info(f"Found user in profiles: {user_id}")
            return user_id

        logger.info("User not found in profiles, searching auth users...")
        user_id = self.scan_auth_users(normalized_email)
        if user_id:
            logger.info(f"Found user in auth users: {user_id}")
        return user_id

    def scan_auth_users(self, normalized_email: str) -> str | None:
        """Page through auth users looking for a case-insensitive email match."""
        per_page = self.settings.auth_users_page_size
        for page in range(1, self.settings.auth_users_max_pages + 1):
            users = self.store.list_auth_users(page=page, per_page=per_page)
            for user in users:
                if user.email and normalize_email(user.email) == normalized_email:
                    return user.id
            if len(users) < per_page:
                return None
        logger.warning("Reached pagination safety limit while scanning auth users")
        return None


def sync_roles(
    store: DataStore,
    user_id: str,
    roles: Iterable[str],
    organization_id: str | None,
) -> RoleSyncResult:
    """Make the stored role set exactly equal to roles.

    Only the difference is written: roles no longer present are deleted and
    new roles inserted. The two writes are not atomic.

    Raises:
        StoreError: If reading or writing role rows fails
    """
    target = set(roles)
    current = store.get_user_roles(user_id)
    removed = current - target
    added = target - current

    if removed:
        store.delete_user_roles(user_id, removed)
        logger.info(f"Removed roles {sorted(removed)} from user {user_id}")
    if added:
        store.insert_user_roles(user_id, added, organization_id)
        logger.info(f"Added roles {sorted(added)} to user {user_id}")

    return RoleSyncResult(
        roles=[role for role in VALID_ROLES if role in target],
        added=added,
        removed=removed,
    )
