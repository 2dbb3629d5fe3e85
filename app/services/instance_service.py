from sqlalchemy.orm import Session
from app.models.n8n_instance import N8NInstance, Environment
from app.core.security import encrypt_api_key, decrypt_api_key
from app.core.cache import invalidate_instance_cache
from app.core.exceptions import N8NStoredKeyError
from app.schemas.scan import InstanceConnection, InstanceScanOutcome
from app.services.analytics_service import AnalyticsService
from cryptography.fernet import InvalidToken
from datetime import datetime
from fastapi import HTTPException, status
from typing import Optional
import uuid
import logging

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Strip whitespace and trailing slashes so '/api/v1' can be appended"""
    return url.strip().rstrip('/')


class InstanceService:
    def __init__(self):
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def _validate_environment(self, environment: str) -> str:
        allowed = [e.value for e in Environment]
        if environment not in allowed:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid environment '{environment}'. Expected one of: {', '.join(allowed)}"
            )
        return environment

    def get_instance(self, db: Session, instance_id: str, user_id: str) -> N8NInstance:
        """Get n8n instance by ID, ensuring user owns it"""
        self.logger.info(f"get_instance: Entry - instance: {instance_id}, user: {user_id}")

        try:
            instance = db.query(N8NInstance).filter(
                N8NInstance.id == instance_id,
                N8NInstance.user_id == user_id
            ).first()

            if not instance:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Instance not found"
                )

            self.logger.info(f"get_instance: Success - instance: {instance_id}")
            return instance
        except HTTPException:
            raise
        except Exception as e:
            self.analytics.log_failure(
                action='get_instance',
                error=str(e),
                user_id=user_id,
                parameters={'instance_id': instance_id}
            )
            self.logger.error(f"get_instance: Failure - {e}")
            raise

    def get_instance_by_id(self, db: Session, instance_id: str) -> N8NInstance:
        """Get n8n instance by ID only (CLI, no owner)"""
        self.logger.info(f"get_instance_by_id: Entry - instance: {instance_id}")

        instance = db.query(N8NInstance).filter(N8NInstance.id == instance_id).first()
        if not instance:
            self.logger.error(f"get_instance_by_id: Failure - instance {instance_id} not found")
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Instance not found"
            )

        self.logger.info(f"get_instance_by_id: Success - instance: {instance_id}")
        return instance

    def list_instances(
        self,
        db: Session,
        user_id: Optional[str] = None,
        active_only: bool = False
    ) -> list[N8NInstance]:
        """List n8n instances of a user, or of every user when user_id is None"""
        self.logger.info(f"list_instances: Entry - user: {user_id}, active_only: {active_only}")

        try:
            query = db.query(N8NInstance)
            if user_id is not None:
                query = query.filter(N8NInstance.user_id == user_id)
            if active_only:
                query = query.filter(N8NInstance.is_active.is_(True))
            instances = query.order_by(N8NInstance.created_at).all()

            self.logger.info(f"list_instances: Success - user: {user_id}, count: {len(instances)}")
            return instances
        except Exception as e:
            self.analytics.log_failure(
                action='list_instances',
                error=str(e),
                user_id=user_id
            )
            self.logger.error(f"list_instances: Failure - {e}")
            raise

    def create_instance(
        self,
        db: Session,
        user_id: str,
        name: str,
        url: str,
        api_key: str,
        environment: str = Environment.PRODUCTION.value,
        is_active: bool = True
    ) -> N8NInstance:
        """Register a new n8n instance; the API key is stored encrypted"""
        self.logger.info(f"create_instance: Entry - user: {user_id}, name: {name}, environment: {environment}")

        try:
            instance = N8NInstance(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                url=normalize_url(url),
                api_key_encrypted=encrypt_api_key(api_key),
                environment=self._validate_environment(environment),
                is_active=is_active
            )

            db.add(instance)
            db.commit()
            db.refresh(instance)

            self.analytics.log_success(
                action='create_instance',
                user_id=user_id,
                parameters={'instance_id': instance.id, 'environment': environment}
            )
            self.logger.info(f"create_instance: Success - instance: {instance.id}")
            return instance
        except HTTPException:
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='create_instance',
                error=str(e),
                user_id=user_id,
                parameters={'name': name, 'url': url}
            )
            self.logger.error(f"create_instance: Failure - {e}")
            raise

    def update_instance(
        self,
        db: Session,
        instance_id: str,
        user_id: str,
        name: str = None,
        url: str = None,
        api_key: str = None,
        environment: str = None,
        is_active: bool = None
    ) -> N8NInstance:
        """Update an existing n8n instance"""
        self.logger.info(f"update_instance: Entry - instance: {instance_id}, user: {user_id}")

        try:
            instance = self.get_instance(db, instance_id, user_id)

            if name is not None:
                instance.name = name
            if url is not None:
                instance.url = normalize_url(url)
            if api_key is not None:
                instance.api_key_encrypted = encrypt_api_key(api_key)
            if environment is not None:
                instance.environment = self._validate_environment(environment)
            if is_active is not None:
                instance.is_active = is_active

            db.commit()
            db.refresh(instance)

            # A new URL or key means cached payloads may belong to another server
            if url is not None or api_key is not None:
                invalidate_instance_cache(instance_id)

            self.analytics.log_success(
                action='update_instance',
                user_id=user_id,
                parameters={'instance_id': instance_id}
            )
            self.logger.info(f"update_instance: Success - instance: {instance_id}")
            return instance
        except HTTPException:
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='update_instance',
                error=str(e),
                user_id=user_id,
                parameters={'instance_id': instance_id}
            )
            self.logger.error(f"update_instance: Failure - {e}")
            raise

    def delete_instance(self, db: Session, instance_id: str, user_id: str):
        """Delete an n8n instance"""
        self.logger.info(f"delete_instance: Entry - instance: {instance_id}, user: {user_id}")

        try:
            instance = self.get_instance(db, instance_id, user_id)
            db.delete(instance)
            db.commit()
            invalidate_instance_cache(instance_id)

            self.analytics.log_success(
                action='delete_instance',
                user_id=user_id,
                parameters={'instance_id': instance_id}
            )
            self.logger.info(f"delete_instance: Success - instance: {instance_id}")
        except HTTPException:
            raise
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='delete_instance',
                error=str(e),
                user_id=user_id,
                parameters={'instance_id': instance_id}
            )
            self.logger.error(f"delete_instance: Failure - {e}")
            raise

    def record_scan(self, db: Session, instance: N8NInstance, scanned_at: datetime):
        instance.last_scanned_at = scanned_at.replace(tzinfo=None)
        db.commit()

    def record_version(self, db: Session, instance: N8NInstance, version: Optional[str]):
        if version and version != instance.version:
            instance.version = version
            db.commit()

    def get_decrypted_api_key(self, instance: N8NInstance) -> str:
        """Get decrypted API key for an instance"""
        return decrypt_api_key(instance.api_key_encrypted)

    def to_connection(self, instance: N8NInstance) -> InstanceConnection:
        """
        What the scan engine needs to reach the instance.
        Raises N8NStoredKeyError when the stored key no longer decrypts.
        """
        try:
            api_key = self.get_decrypted_api_key(instance)
        except (InvalidToken, ValueError, TypeError) as e:
            self.logger.error(f"to_connection: Failure - instance: {instance.id}, stored API key unreadable")
            raise N8NStoredKeyError("Stored API key cannot be decrypted; re-enter it") from e

        return InstanceConnection(
            id=instance.id,
            name=instance.name,
            url=instance.url,
            api_key=api_key,
            environment=instance.environment or Environment.PRODUCTION.value,
        )

    def to_connections(
        self,
        instances: list[N8NInstance],
    ) -> tuple[list[InstanceConnection], list[InstanceScanOutcome]]:
        """Connections for a batch scan; instances whose key is unreadable become failed outcomes"""
        connections = []
        failed = []
        for instance in instances:
            try:
                connections.append(self.to_connection(instance))
            except N8NStoredKeyError as e:
                failed.append(InstanceScanOutcome.failure(instance.id, instance.name, e))
        return connections, failed
