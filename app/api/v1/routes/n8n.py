from fastapi import APIRouter, Depends, HTTPException
from app.core.exceptions import N8NClientError
from app.core.middleware import get_current_user
from app.api.v1.errors import n8n_http_exception
from app.services.release_service import ReleaseService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/latest-version")
async def get_latest_version(
    current_user: dict = Depends(get_current_user),
):
    """Latest n8n release on npm, to compare against instance versions"""
    logger.info(f"get_latest_version: Entry - user: {current_user['uid']}")

    try:
        release = await ReleaseService().get_latest_release()
    except N8NClientError as e:
        logger.error(f"get_latest_version: Failure - {e}")
        raise n8n_http_exception(e)
    except Exception as e:
        logger.error(f"get_latest_version: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"get_latest_version: Success - version: {release.version}")
    return {"success": True, "data": release.to_dict()}
