"""Client for the identity hub's signature verification endpoint.

The hub holds the signing secret, so signatures are never checked locally:
``{payload, signature}`` is forwarded and the hub's verdict is trusted.
"""

import logging
from typing import Any

import httpx

from webhooks.shared.config import Settings
from webhooks.sso.schema import HubVerification, SsoError

logger = logging.getLogger(__name__)


class HubClient:
    """Delegates SSO signature verification to the hub."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize hub client.

        Args:
            settings: Application settings with the hub verification URL
            client: Optional preconfigured HTTP client
        """
        self.settings = settings
        self._url = settings.sso_hub_verify_url
        self._client = client or httpx.Client(timeout=settings.hub_timeout_seconds)

    def is_available(self) -> bool:
        """Check if a hub URL is configured."""
        return bool(self._url)

    def verify(self, payload: dict[str, Any], signature: str) -> HubVerification:
        """Ask the hub whether the signature over payload is valid.

        Args:
            payload: SSO payload exactly as received
            signature: Signature issued by the hub

        Returns:
            HubVerification; ``valid`` is False for an expected rejection

        Raises:
            SsoError: HUB_UNREACHABLE, HUB_ERROR (or the hub's code) and
                UNEXPECTED_HUB_RESPONSE
        """
        if not self.is_available():
            raise SsoError("SSO_NOT_CONFIGURED", 500, "Hub verification URL is not configured")

        try:
            response = self._client.post(
                self._url, json={"payload": payload, "signature": signature}
            )
        except httpx.HTTPError as e:
            logger.error(f"Hub unreachable: {e}")
            raise SsoError("HUB_UNREACHABLE", 500, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            error_code, message = self._extract_error(body)
            logger.error(f"Hub returned {response.status_code}: {error_code}")
            status_code = 401 if response.status_code < 500 else 500
            raise SsoError(error_code, status_code, message)

        if not isinstance(body, dict):
            logger.error("Hub returned an unparseable body")
            raise SsoError("UNEXPECTED_HUB_RESPONSE", 500, "Hub response is not a JSON object")

        return self._parse_verdict(body)

    @staticmethod
    def _extract_error(body: Any) -> tuple[str, str | None]:
        if isinstance(body, dict):
            code = body.get("error_code") or body.get("error")
            message = body.get("message")
            if isinstance(code, str) and code:
                return code, message if isinstance(message, str) else None
        return "HUB_ERROR", None

    @staticmethod
    def _parse_verdict(body: dict[str, Any]) -> HubVerification:
        payload = body.get("payload")
        if not isinstance(payload, dict):
            payload = None

        if isinstance(body.get("valid"), bool):
            error = body.get("error")
            return HubVerification(
                valid=body["valid"],
                payload=payload,
                error=error if isinstance(error, str) else None,
            )

        # Legacy hub shape
        if isinstance(body.get("success"), bool):
            error = body.get("error_code") or body.get("error")
            return HubVerification(
                valid=body["success"],
                payload=payload,
                error=error if isinstance(error, str) else None,
            )

        logger.error(f"Unexpected hub response keys: {sorted(body)}")
        raise SsoError("UNEXPECTED_HUB_RESPONSE", 500, "Hub response has an unknown shape")
