from cryptography.fernet import Fernet, InvalidToken
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)


def get_cipher() -> Fernet:
    return Fernet(settings.encryption_key.encode())


def encrypt_api_key(api_key: str) -> str:
    """Encrypt an n8n API key before it is stored with its instance"""
    logger.info("encrypt_api_key: Entry")

    try:
        encrypted = get_cipher().encrypt(api_key.encode())
        logger.info("encrypt_api_key: Success")
        return encrypted.decode()
    except (ValueError, TypeError) as e:
        logger.error(f"encrypt_api_key: Failure - {e}")
        raise


def decrypt_api_key(encrypted_key: str) -> str:
    """Decrypt a stored n8n API key. Raises InvalidToken if ENCRYPTION_KEY was rotated."""
    logger.info("decrypt_api_key: Entry")

    try:
        decrypted = get_cipher().decrypt(encrypted_key.encode())
        logger.info("decrypt_api_key: Success")
        return decrypted.decode()
    except (InvalidToken, ValueError, TypeError) as e:
        logger.error(f"decrypt_api_key: Failure - {type(e).__name__}")
        raise
