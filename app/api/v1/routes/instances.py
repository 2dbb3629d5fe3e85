from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, ConfigDict
from app.core.middleware import get_current_user
from app.core.database import get_db
from app.core.exceptions import N8NClientError
from app.api.v1.errors import n8n_http_exception
from app.schemas.instance import InstanceResponse
from app.services.instance_service import InstanceService
from app.services.aggregation_service import calculate_instance_stats
from app.services.n8n_client import N8NClient
from app.services.scan_service import ScanService, summarize_credential
from app.services.workflow_classifier import classify, workflow_breakdown
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


class InstanceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both api_key and apiKey

    name: str
    url: str
    api_key: str = Field(..., alias="apiKey")
    environment: str = "production"
    is_active: bool = Field(True, alias="isActive")


class InstanceUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)  # Allows both api_key and apiKey

    name: str | None = None
    url: str | None = None
    api_key: str | None = Field(None, alias="apiKey")
    environment: str | None = None
    is_active: bool | None = Field(None, alias="isActive")


class ConnectionTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    api_key: str = Field(..., alias="apiKey")


def _to_response(instance) -> dict:
    return InstanceResponse.model_validate(instance).to_dict()


async def _list_instances(
    current_user: dict,
    db: Session,
):
    """List all n8n instances for the current user"""
    logger.info(f"list_instances: Entry - user: {current_user['uid']}")

    try:
        service = InstanceService()
        instances = service.list_instances(db, current_user['uid'])
        logger.info(f"list_instances: Success - {len(instances)} instances")
        return {"instances": [_to_response(instance) for instance in instances]}
    except Exception as e:
        logger.error(f"list_instances: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("")
@router.get("/")
async def list_instances(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List all n8n instances for the current user"""
    return await _list_instances(current_user, db)


async def _create_instance(
    instance_data: InstanceCreate,
    current_user: dict,
    db: Session,
):
    """Register a new n8n instance"""
    logger.info(f"create_instance: Entry - user: {current_user['uid']}, name: {instance_data.name}")

    try:
        service = InstanceService()
        instance = service.create_instance(
            db,
            current_user['uid'],
            instance_data.name,
            instance_data.url,
            instance_data.api_key,
            instance_data.environment,
            instance_data.is_active
        )
        logger.info(f"create_instance: Success - instance: {instance.id}")
        return _to_response(instance)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"create_instance: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("")
@router.post("/")
async def create_instance(
    instance_data: InstanceCreate,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Register a new n8n instance"""
    return await _create_instance(instance_data, current_user, db)


@router.get("/stats")
async def get_instance_stats(
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Instance counts by active flag and environment"""
    logger.info(f"get_instance_stats: Entry - user: {current_user['uid']}")

    try:
        instances = InstanceService().list_instances(db, current_user['uid'])
        stats = calculate_instance_stats(instances)
        logger.info(f"get_instance_stats: Success - total: {stats.total_instances}")
        return stats.to_dict()
    except Exception as e:
        logger.error(f"get_instance_stats: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/test-connection")
async def test_connection(
    request: ConnectionTestRequest,
    current_user: dict = Depends(get_current_user),
):
    """Check a URL and API key before registering them"""
    logger.info(f"test_connection: Entry - user: {current_user['uid']}, url: {request.url}")

    result = await N8NClient(request.url, request.api_key).test_connection()
    logger.info(f"test_connection: Success - reachable: {result.success}")
    return result.to_dict()


@router.get("/{instance_id}")
async def get_instance(
    instance_id: str,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get an n8n instance by ID"""
    logger.info(f"get_instance: Entry - user: {current_user['uid']}, instance: {instance_id}")

    try:
        service = InstanceService()
        instance = service.get_instance(db, instance_id, current_user['uid'])
        logger.info(f"get_instance: Success - instance: {instance_id}")
        return _to_response(instance)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"get_instance: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{instance_id}")
async def update_instance(
    instance_id: str,
    instance_data: InstanceUpdate,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update an n8n instance"""
    logger.info(f"update_instance: Entry - user: {current_user['uid']}, instance: {instance_id}")

    try:
        service = InstanceService()
        instance = service.update_instance(
            db,
            instance_id,
            current_user['uid'],
            instance_data.name,
            instance_data.url,
            instance_data.api_key,
            instance_data.environment,
            instance_data.is_active
        )
        logger.info(f"update_instance: Success - instance: {instance_id}")
        return _to_response(instance)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"update_instance: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{instance_id}")
async def delete_instance(
    instance_id: str,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete an n8n instance"""
    logger.info(f"delete_instance: Entry - user: {current_user['uid']}, instance: {instance_id}")

    try:
        service = InstanceService()
        service.delete_instance(db, instance_id, current_user['uid'])
        logger.info(f"delete_instance: Success - instance: {instance_id}")
        return {"status": "deleted", "instance_id": instance_id}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"delete_instance: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{instance_id}/version")
async def get_instance_version(
    instance_id: str,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Detect the n8n version of an instance and remember it"""
    logger.info(f"get_instance_version: Entry - user: {current_user['uid']}, instance: {instance_id}")

    service = InstanceService()
    instance = service.get_instance(db, instance_id, current_user['uid'])

    try:
        connection = service.to_connection(instance)
        version = await N8NClient(connection.url, connection.api_key).get_version()
    except N8NClientError as e:
        logger.error(f"get_instance_version: Failure - {e}")
        raise n8n_http_exception(e)

    service.record_version(db, instance, version)
    logger.info(f"get_instance_version: Success - instance: {instance_id}, version: {version}")
    return {"instanceId": instance_id, "version": version}


@router.get("/{instance_id}/workflows")
async def list_instance_workflows(
    instance_id: str,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Normalized workflows of an instance with their derived status"""
    logger.info(f"list_instance_workflows: Entry - user: {current_user['uid']}, instance: {instance_id}")

    service = InstanceService()
    instance = service.get_instance(db, instance_id, current_user['uid'])

    try:
        connection = service.to_connection(instance)
        workflows = await N8NClient(connection.url, connection.api_key).list_workflows(instance_id)
    except N8NClientError as e:
        logger.error(f"list_instance_workflows: Failure - {e}")
        raise n8n_http_exception(e)

    logger.info(f"list_instance_workflows: Success - instance: {instance_id}, count: {len(workflows)}")
    return {
        "workflows": [
            {**workflow.to_dict(), "status": classify(workflow).value}
            for workflow in workflows
        ],
        "breakdown": workflow_breakdown(workflows).to_dict(),
    }


@router.get("/{instance_id}/credentials")
async def list_instance_credentials(
    instance_id: str,
    current_user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Credentials of an instance, remote and node-referenced, with their usage"""
    logger.info(f"list_instance_credentials: Entry - user: {current_user['uid']}, instance: {instance_id}")

    service = InstanceService()
    instance = service.get_instance(db, instance_id, current_user['uid'])

    try:
        connection = service.to_connection(instance)
        credentials, available = await ScanService().list_credentials(connection)
    except N8NClientError as e:
        logger.error(f"list_instance_credentials: Failure - {e}")
        raise n8n_http_exception(e)

    logger.info(f"list_instance_credentials: Success - instance: {instance_id}, count: {len(credentials)}")
    return {
        "credentials": [credential.to_dict() for credential in credentials],
        "summary": [summarize_credential(credential).to_dict() for credential in credentials],
        "credentialsAvailable": available,
    }
