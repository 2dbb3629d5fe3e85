from fastapi import HTTPException, status
from app.core.exceptions import (
    N8NAuthenticationError,
    N8NClientError,
    N8NTimeoutError,
)


def n8n_http_exception(error: N8NClientError) -> HTTPException:
    """
    Map a remote n8n failure to the response the UI expects.
    A rejected API key is a failed dependency (424) so the UI can ask for a new
    key instead of reporting the server as down.
    """
    if isinstance(error, N8NAuthenticationError):
        status_code = status.HTTP_424_FAILED_DEPENDENCY
    elif isinstance(error, N8NTimeoutError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        status_code = status.HTTP_502_BAD_GATEWAY

    return HTTPException(
        status_code=status_code,
        detail={"errorType": error.error_type, "error": str(error)},
    )
