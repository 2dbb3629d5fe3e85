"""
Errors raised while talking to a remote n8n instance.

The scan engine distinguishes connectivity problems from rejected API keys so
callers can prompt for the right fix, and treats a missing optional endpoint
(e.g. /credentials on older n8n builds) as a degraded capability rather than
a failure.
"""

from typing import Optional


class N8NClientError(Exception):
    """Base class for n8n remote API errors"""

    error_type = "unexpected"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class N8NConnectionError(N8NClientError):
    """Instance unreachable, DNS failure, timeout or unexpected redirect"""

    error_type = "connection"


class N8NAuthenticationError(N8NClientError):
    """API key rejected by the instance"""

    error_type = "authentication"


class N8NCapabilityError(N8NClientError):
    """Endpoint not exposed by this n8n instance"""

    error_type = "capability"


class N8NResponseError(N8NClientError):
    """Unexpected status code or body from the instance"""

    error_type = "response"


class N8NTimeoutError(N8NConnectionError):
    """Instance did not answer within the request timeout"""


class N8NStoredKeyError(N8NAuthenticationError):
    """Stored API key cannot be decrypted (ENCRYPTION_KEY rotated or row corrupted)"""
