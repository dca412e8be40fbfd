"""
Caller authentication for the tool gateway.

This module handles the Authentication (AuthN) layer:
- Extracts the Bearer value from the HTTP Authorization header
- Verifies it against the configured auth mode

Auth modes (gateway.auth.mode):
- none:      every caller is authenticated, with or without a header
- token:     the Bearer value must equal gateway.auth.token
- password:  the Bearer value must equal gateway.auth.password
             (password mode reuses the Bearer channel; there is no other field)

Security concepts:
- **Fail closed**: token or password mode without a configured secret rejects
  every caller instead of falling back to anonymous access
- **Constant-time comparison**: secrets are compared with hmac.compare_digest
- **No leakage**: the failure reason is logged server-side only; the client
  sees a bare 401 before any session or tool lookup happens
"""

import hmac
from dataclasses import dataclass

from tool_gateway.config import AuthConfig


class AuthError(Exception):
    """
    Raised when the caller cannot be authenticated.

    A single exception type covers every failure (missing header, wrong
    secret, missing server-side secret). The reason is kept for server-side
    logs only.

    Attributes:
        message: Machine-readable failure reason (logged server-side)
        status_code: HTTP status code to return (401 for auth failures)
    """

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class AuthResult:
    """
    Outcome of a credential check.

    Attributes:
        authenticated: Whether the caller may proceed
        reason: Why the caller was rejected (None when authenticated)
    """

    authenticated: bool
    reason: str | None = None


def extract_bearer(authorization_header: str | None) -> str | None:
    """
    Return the credential from a "Bearer <value>" header, or None.

    The scheme is matched case-insensitively per RFC 6750. Any other scheme,
    or a header without a value, yields None.
    """
    if not authorization_header:
        return None
    parts = authorization_header.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    value = parts[1].strip()
    return value or None


def _secret_matches(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def verify_credential(auth_config: AuthConfig, presented: str | None) -> AuthResult:
    """
    Decide whether a presented Bearer value satisfies the auth configuration.

    Args:
        auth_config: Effective auth configuration (mode already resolved)
        presented: The Bearer value from the request, or None if absent

    Returns:
        AuthResult; never raises
    """
    mode = auth_config.mode or "none"
    if mode == "none":
        return AuthResult(authenticated=True)

    expected = auth_config.token if mode == "token" else auth_config.password
    if not expected:
        return AuthResult(authenticated=False, reason=f"{mode}_missing_config")
    if presented is None:
        return AuthResult(authenticated=False, reason=f"{mode}_missing")
    if not _secret_matches(presented, expected):
        return AuthResult(authenticated=False, reason=f"{mode}_mismatch")
    return AuthResult(authenticated=True)


def authenticate(auth_config: AuthConfig, presented: str | None) -> None:
    """
    Verify the caller or raise.

    Raises:
        AuthError: If the presented credential does not satisfy the auth mode
    """
    result = verify_credential(auth_config, presented)
    if not result.authenticated:
        raise AuthError(result.reason or "unauthorized")
