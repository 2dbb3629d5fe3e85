from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.exceptions import N8NClientError
from app.core.rate_limit_middleware import scan_rate_limit
from app.api.v1.errors import n8n_http_exception
from app.services.instance_service import InstanceService
from app.services.scan_service import ScanService
from app.services.aggregation_service import AggregationService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/instances/{instance_id}")
async def scan_instance(
    instance_id: str,
    refresh: bool = Query(True, description="Bypass the n8n response cache"),
    current_user: dict = Depends(scan_rate_limit),
    db: Session = Depends(get_db),
):
    """Run a security scan of one instance"""
    logger.info(f"scan_instance: Entry - user: {current_user['uid']}, instance: {instance_id}")

    service = InstanceService()
    instance = service.get_instance(db, instance_id, current_user['uid'])

    try:
        connection = service.to_connection(instance)
        result = await ScanService().scan_instance(connection, refresh=refresh, user_id=current_user['uid'])
    except N8NClientError as e:
        logger.error(f"scan_instance: Failure - {e}")
        raise n8n_http_exception(e)
    except Exception as e:
        logger.error(f"scan_instance: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))

    service.record_scan(db, instance, result.scan_date)
    logger.info(f"scan_instance: Success - instance: {instance_id}, findings: {len(result.findings)}")
    return {"success": True, "data": result.to_dict()}


@router.post("")
@router.post("/")
async def scan_all_instances(
    refresh: bool = Query(True, description="Bypass the n8n response cache"),
    current_user: dict = Depends(scan_rate_limit),
    db: Session = Depends(get_db),
):
    """Scan every active instance of the user; failed instances are reported per instance"""
    logger.info(f"scan_all_instances: Entry - user: {current_user['uid']}")

    service = InstanceService()
    instances = service.list_instances(db, current_user['uid'], active_only=True)
    by_id = {instance.id: instance for instance in instances}

    connections, failed = service.to_connections(instances)

    try:
        aggregated = await AggregationService().scan_instances(
            connections,
            refresh=refresh,
            user_id=current_user['uid'],
            failed=failed,
        )
    except Exception as e:
        logger.error(f"scan_all_instances: Failure - {e}")
        raise HTTPException(status_code=500, detail=str(e))

    for outcome in aggregated.instances:
        if outcome.success and outcome.result:
            service.record_scan(db, by_id[outcome.instance_id], outcome.result.scan_date)

    logger.info(
        f"scan_all_instances: Success - scanned: {aggregated.stats.scanned_instances}, "
        f"failed: {aggregated.stats.failed_instances}"
    )
    return {"success": True, "data": aggregated.to_dict()}
