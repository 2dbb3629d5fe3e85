import firebase_admin
from firebase_admin import credentials, auth, firestore
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


def init_firebase():
    """Initialize the Firebase Admin app backing operator auth and scan analytics"""
    logger.info("init_firebase: Entry")

    if firebase_admin._apps:
        logger.info("init_firebase: Already initialized")
        return

    try:
        cred = credentials.Certificate(settings.firebase_credentials_path)
        firebase_admin.initialize_app(cred, {
            'projectId': settings.firebase_project_id,
        })
    except (ValueError, OSError) as e:
        # Missing file or malformed service account
        logger.error(f"init_firebase: Failure - {e}, credentials: {settings.firebase_credentials_path}")
        raise

    logger.info(f"init_firebase: Success - project: {settings.firebase_project_id}")


def verify_firebase_token(token: str) -> dict:
    """
    Verify an operator's Firebase ID token and return its claims.
    Revoked sessions are rejected only when FIREBASE_CHECK_REVOKED is set,
    since that costs an extra round trip per request.
    """
    logger.info("verify_firebase_token: Entry")

    try:
        decoded_token = auth.verify_id_token(token, check_revoked=settings.firebase_check_revoked)
    except Exception as e:
        logger.error(f"verify_firebase_token: Failure - {e}")
        raise

    logger.info(f"verify_firebase_token: Success - {decoded_token.get('uid')}")
    return decoded_token


def get_firestore_client():
    return firestore.client()
