"""SSO handshake models and errors."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class SsoError(Exception):
    """SSO failure with a stable machine-readable code.

    Attributes:
        error_code: Code the caller can branch on (e.g. TOKEN_EXPIRED)
        status_code: HTTP status for the response
        message: Optional human-readable detail
    """

    def __init__(self, error_code: str, status_code: int, message: str | None = None) -> None:
        super().__init__(message or error_code)
        self.error_code = error_code
        self.status_code = status_code
        self.message = message

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": False, "error_code": self.error_code}
        if self.message:
            body["message"] = self.message
        return body


class SsoPayload(BaseModel):
    """Identity assertion issued by the hub.

    Unknown keys are kept so the payload can be echoed back unchanged.
    """

    model_config = ConfigDict(extra="allow")

    user_id: str
    email: str
    organization_id: str | None = None
    full_name: str | None = None
    timestamp: int | None = None
    expires_at: int
    preferences: dict[str, Any] | None = None
    roles: list[str] | None = None


class SsoVerifyRequest(BaseModel):
    """Body of POST /verify-sso-token."""

    payload: dict[str, Any] | None = None
    signature: str | None = None
    target_view: Literal["planning", "warehouse"] | None = None


class HubVerification(BaseModel):
    """Normalized hub verdict."""

    valid: bool
    payload: dict[str, Any] | None = None
    error: str | None = None


class SsoUser(BaseModel):
    id: str
    email: str
    organization_id: str | None
    full_name: str | None
    sso_user: bool = True


class SsoSessionResult(BaseModel):
    """Successful SSO handshake."""

    success: bool = True
    access_token: str
    refresh_token: str
    user: SsoUser
    preferences: dict[str, Any] | None = None
    roles: list[str]
