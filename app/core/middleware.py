from fastapi import Request, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.firebase import verify_firebase_token
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> dict:
    """
    Resolve the operator behind a Firebase bearer token.
    Instances are owned per user, so every instance and scan route depends on this.
    """
    logger.info("get_current_user: Entry")

    try:
        decoded_token = verify_firebase_token(credentials.credentials)
    except Exception as e:
        # firebase_admin raises several unrelated error types for bad tokens
        logger.error(f"get_current_user: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decoded_token.get('uid')
    if not user_id:
        logger.error("get_current_user: Failure - token has no uid")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Picked up by the scan rate limiter
    request.state.user_id = user_id

    logger.info(f"get_current_user: Success - {user_id}")
    return {
        'uid': user_id,
        'email': decoded_token.get('email'),
        'token': decoded_token
    }
