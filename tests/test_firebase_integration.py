"""
Tests for Firebase token verification and scan analytics
"""

import pytest
from unittest.mock import MagicMock, patch

from app.core import firebase
from app.services.analytics_service import AnalyticsService


@pytest.fixture
def mock_firestore():
    """Firestore client whose collection().add() calls are recorded"""
    client = MagicMock()
    with patch("app.services.analytics_service.get_firestore_client", return_value=client):
        yield client


class TestFirebaseInitialization:
    """Test Firebase Admin setup"""

    def test_initializes_once(self):
        with patch.object(firebase.firebase_admin, "_apps", {}), \
             patch.object(firebase.firebase_admin, "initialize_app") as mock_init, \
             patch.object(firebase.credentials, "Certificate") as mock_cert:
            firebase.init_firebase()

        mock_cert.assert_called_once()
        mock_init.assert_called_once()
        assert mock_init.call_args.args[1] == {"projectId": "test-project"}

    def test_already_initialized(self):
        with patch.object(firebase.firebase_admin, "_apps", {"[DEFAULT]": MagicMock()}), \
             patch.object(firebase.firebase_admin, "initialize_app") as mock_init:
            firebase.init_firebase()

        mock_init.assert_not_called()

    def test_bad_credentials_file_raises(self):
        with patch.object(firebase.firebase_admin, "_apps", {}), \
             patch.object(firebase.credentials, "Certificate", side_effect=ValueError("Invalid service account")):
            with pytest.raises(ValueError):
                firebase.init_firebase()


class TestTokenVerification:
    """Test verify_firebase_token"""

    def test_valid_token(self):
        with patch.object(firebase, "auth") as mock_auth:
            mock_auth.verify_id_token.return_value = {"uid": "test_user_123", "email": "test@example.com"}

            result = firebase.verify_firebase_token("token")

        assert result["uid"] == "test_user_123"
        mock_auth.verify_id_token.assert_called_once_with("token", check_revoked=False)

    def test_revocation_check_enabled(self):
        with patch.object(firebase, "auth") as mock_auth, \
             patch.object(firebase, "settings") as mock_settings:
            mock_settings.firebase_check_revoked = True
            mock_auth.verify_id_token.return_value = {"uid": "test_user_123"}

            firebase.verify_firebase_token("token")

        mock_auth.verify_id_token.assert_called_once_with("token", check_revoked=True)

    def test_invalid_token_propagates(self):
        with patch.object(firebase, "auth") as mock_auth:
            mock_auth.verify_id_token.side_effect = ValueError("Invalid token")

            with pytest.raises(ValueError) as exc_info:
                firebase.verify_firebase_token("invalid_token")

        assert "Invalid token" in str(exc_info.value)


class TestAnalyticsService:
    """Test Firestore event recording"""

    def test_log_success(self, mock_firestore):
        service = AnalyticsService()

        service.log_success(action="scan_instance", user_id="user-1", parameters={"instance_id": "inst-1"})

        mock_firestore.collection.assert_called_once_with("scan_events")
        document = mock_firestore.collection.return_value.add.call_args.args[0]
        assert document["event_name"] == "scan_instance_success"
        assert document["parameters"] == {"status": "success", "instance_id": "inst-1"}

    def test_log_failure_records_event_and_error(self, mock_firestore):
        """Test that failures land in both the events and the errors collection"""
        service = AnalyticsService()

        service.log_failure(
            action="scan_instance",
            error="Invalid API key (HTTP 401)",
            user_id="user-1",
            parameters={"instance_id": "inst-1"},
            error_type="authentication",
        )

        collections = [call.args[0] for call in mock_firestore.collection.call_args_list]
        assert collections == ["scan_events", "scan_errors"]
        error_document = mock_firestore.collection.return_value.add.call_args_list[1].args[0]
        assert error_document["error_type"] == "authentication"

    def test_firestore_outage_never_raises(self, mock_firestore):
        mock_firestore.collection.return_value.add.side_effect = RuntimeError("Firestore unavailable")
        service = AnalyticsService()

        service.log_success(action="scan_instance", user_id="user-1")
        service.log_failure(action="scan_instance", error="boom")
