import logging
from datetime import datetime, timezone
from app.core.firebase import get_firestore_client

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Records scan and instance events in Firestore. Never raises into the caller."""

    def __init__(self):
        self.db = get_firestore_client()
        self.events_collection = 'scan_events'
        self.errors_collection = 'scan_errors'
        self.logger = logging.getLogger(__name__)

    def _add(self, collection: str, document: dict) -> bool:
        try:
            self.db.collection(collection).add(document)
            return True
        except Exception as e:
            # Analytics failures must not break a scan
            logger.error(f"AnalyticsService: Failure writing to {collection} - {e}")
            return False

    def log_event(
        self,
        event_name: str,
        user_id: str = None,
        parameters: dict = None,
    ):
        logger.info(f"log_event: Entry - {event_name}, user: {user_id}")

        if self._add(self.events_collection, {
            'event_name': event_name,
            'user_id': user_id,
            'parameters': parameters or {},
            'timestamp': datetime.now(timezone.utc),
        }):
            logger.info(f"log_event: Success - {event_name}")

    def log_success(
        self,
        action: str,
        user_id: str = None,
        parameters: dict = None
    ):
        self.log_event(
            event_name=f'{action}_success',
            user_id=user_id,
            parameters={
                'status': 'success',
                **(parameters or {})
            }
        )

    def log_failure(
        self,
        action: str,
        error: str,
        user_id: str = None,
        parameters: dict = None,
        error_type: str = None
    ):
        """
        Record a failed action twice: as a '<action>_failure' event for failure
        rates, and in the error collection with its error type for debugging.
        """
        logger.info(f"log_failure: Entry - {action}, error: {error}")

        self.log_event(
            event_name=f'{action}_failure',
            user_id=user_id,
            parameters={
                'status': 'failure',
                'error': error,
                'error_type': error_type,
                **(parameters or {})
            }
        )
        self._add(self.errors_collection, {
            'action': action,
            'user_id': user_id,
            'error_message': error,
            'error_type': error_type,
            'parameters': parameters or {},
            'timestamp': datetime.now(timezone.utc),
        })
