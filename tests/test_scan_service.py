"""
Tests for the scan orchestrator
"""

import logging
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.core.exceptions import N8NAuthenticationError, N8NCapabilityError, N8NConnectionError
from app.schemas.finding import FindingType
from app.schemas.scan import InstanceConnection, ScanState
from app.services.scan_service import ScanService


@pytest.fixture
def instance():
    return InstanceConnection(id="inst-1", name="Production", url="https://n8n.example.com", api_key="k")


@pytest.fixture
def analytics():
    with patch("app.services.scan_service.AnalyticsService") as mock_analytics_class:
        yield mock_analytics_class.return_value


def _factory(workflows, credentials=None, credentials_error=None, workflows_error=None):
    """Client factory returning a mock client serving the given raw payloads"""
    client = MagicMock()
    client.fetch_workflows = AsyncMock(return_value=workflows, side_effect=workflows_error)
    if credentials_error is not None:
        client.fetch_credentials = AsyncMock(side_effect=credentials_error)
    else:
        client.fetch_credentials = AsyncMock(return_value=credentials or [])
    return MagicMock(return_value=client), client


class TestScenario:
    """Two active workflows, one archived, one shared credential"""

    @pytest.mark.asyncio
    async def test_scenario(self, instance, analytics, scenario_payload):
        """Test stats and findings of the reference scenario"""
        # Setup
        workflows, credentials = scenario_payload
        factory, client = _factory(workflows, credentials)
        service = ScanService(client_factory=factory)

        # Execute
        result = await service.scan_instance(instance)

        # Verify
        factory.assert_called_once_with("https://n8n.example.com", "k")
        assert result.state == ScanState.DONE
        assert result.instance_id == "inst-1"
        assert result.stats.workflows.total == 3
        assert result.stats.workflows.active == 2
        assert result.stats.workflows.inactive == 0
        assert result.stats.workflows.archived == 1

        plaintext = [f for f in result.findings if f.type == FindingType.PLAINTEXT]
        assert len(plaintext) == 1
        assert plaintext[0].workflow_id == "wf-1"
        assert not [f for f in result.findings if f.type in (FindingType.UNUSED, FindingType.SHARED_KEY)]

        assert result.stats.total_credentials == 1
        assert result.stats.unique_credentials == 1
        assert result.stats.high_findings == 1
        assert result.stats.active_findings == len(result.findings)
        assert result.credentials_available is True
        assert [c.used_by for c in result.credentials] == [2]
        assert [w.id for w in result.workflows] == ["wf-1", "wf-2"]
        assert len(result.all_workflows) == 3

        analytics.log_success.assert_called_once()

    @pytest.mark.asyncio
    async def test_inactive_workflow_is_not_analyzed(self, instance, analytics, scenario_payload, make_workflow, make_node):
        """Test that a paused tracked workflow is counted but neither scanned nor counted as a credential user"""
        # Setup
        workflows, credentials = scenario_payload
        slack = {"slackApi": {"id": "cred-1", "name": "Team Slack"}}
        workflows = workflows + [
            make_workflow("wf-5", "(Paused) Job", active=False, nodes=[
                make_node("n5", "n8n-nodes-base.set", {"auth": "password: x"}, slack),
            ]),
        ]
        factory, _ = _factory(workflows, credentials)

        # Execute
        result = await ScanService(client_factory=factory).scan_instance(instance)

        # Verify
        assert not [f for f in result.findings if f.workflow_id == "wf-5"]
        assert [f.workflow_id for f in result.findings if f.type == FindingType.PLAINTEXT] == ["wf-1"]
        assert result.stats.workflows.total == 4
        assert result.stats.workflows.inactive == 1
        assert [c.used_by for c in result.credentials] == [2]
        assert "wf-5" not in [w.id for w in result.workflows]
        assert "wf-5" in [w.id for w in result.all_workflows]

    @pytest.mark.asyncio
    async def test_findings_share_the_scan_date(self, instance, analytics, scenario_payload):
        workflows, credentials = scenario_payload
        factory, _ = _factory(workflows, credentials)

        result = await ScanService(client_factory=factory).scan_instance(instance)

        assert {f.created_at for f in result.findings} == {result.scan_date}

    @pytest.mark.asyncio
    async def test_serialized_shape(self, instance, analytics, scenario_payload):
        """Test the camelCase wire shape consumed by the UI"""
        workflows, credentials = scenario_payload
        factory, _ = _factory(workflows, credentials)

        data = (await ScanService(client_factory=factory).scan_instance(instance)).to_dict()

        assert set(data["stats"]) >= {
            "workflows", "totalCredentials", "activeFindings",
            "criticalFindings", "highFindings", "mediumFindings", "lowFindings",
        }
        assert data["stats"]["workflows"] == {"total": 3, "active": 2, "inactive": 0, "archived": 1}
        assert data["findings"][0]["instanceId"] == "inst-1"
        assert "scanDate" in data


class TestIdempotence:
    """Scanning an unchanged snapshot twice yields the same findings"""

    @pytest.mark.asyncio
    async def test_same_snapshot_same_findings(self, instance, analytics, scenario_payload, make_workflow, make_node):
        # Setup
        workflows, credentials = scenario_payload
        workflows = workflows + [
            make_workflow("wf-4", "(Legacy) FTP", nodes=[
                make_node("n4", "n8n-nodes-base.ftp", {"host": "http://files.example.com"}),
            ]),
        ]
        factory, _ = _factory(workflows, credentials)
        service = ScanService(client_factory=factory)

        # Execute
        first = await service.scan_instance(instance)
        second = await service.scan_instance(instance)

        # Verify
        def signature(result):
            return {(f.id, f.type, f.severity) for f in result.findings}

        assert signature(first) == signature(second)
        assert len(signature(first)) == len(first.findings)
        assert first.stats == second.stats


class TestGracefulDegradation:
    """Credential fetch failures never fail the scan"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        N8NCapabilityError("Endpoint not available", 405),
        N8NAuthenticationError("Forbidden", 403),
        N8NConnectionError("Connection reset"),
    ])
    async def test_credentials_fetch_failure(self, instance, analytics, scenario_payload, error, caplog):
        """Test that workflow findings survive and totalCredentials is 0"""
        # Setup
        workflows, _ = scenario_payload
        factory, _ = _factory(workflows, credentials_error=error)

        # Execute
        with caplog.at_level(logging.INFO, logger="app.services.scan_service"):
            result = await ScanService(client_factory=factory).scan_instance(instance)

        # Verify
        assert result.state == ScanState.DONE
        assert result.stats.total_credentials == 0
        assert result.credentials_available is False
        assert len([f for f in result.findings if f.type == FindingType.PLAINTEXT]) == 1
        assert "Credentials feature not available" in caplog.text

    @pytest.mark.asyncio
    async def test_node_references_still_reported(self, instance, analytics, scenario_payload):
        """Test that credentials referenced by nodes are listed when the remote list is missing"""
        workflows, _ = scenario_payload
        factory, _ = _factory(workflows, credentials_error=N8NCapabilityError("absent", 404))

        result = await ScanService(client_factory=factory).scan_instance(instance)

        assert [(c.id, c.source.value, c.used_by) for c in result.credentials] == [("cred-1", "workflow", 2)]
        assert result.stats.unique_credentials == 1


class TestFailures:
    """Workflow fetch failures are fatal for the instance"""

    @pytest.mark.asyncio
    async def test_workflow_fetch_failure_raises(self, instance, analytics, caplog):
        # Setup
        factory, client = _factory([], workflows_error=N8NAuthenticationError("Invalid API key", 401))

        # Execute
        with caplog.at_level(logging.INFO, logger="app.services.scan_service"):
            with pytest.raises(N8NAuthenticationError):
                await ScanService(client_factory=factory).scan_instance(instance)

        # Verify
        assert "fetching -> failed" in caplog.text
        client.fetch_credentials.assert_not_called()
        analytics.log_failure.assert_called_once()
        assert analytics.log_failure.call_args.kwargs["error_type"] == "authentication"

    @pytest.mark.asyncio
    async def test_state_transitions_logged(self, instance, analytics, caplog):
        factory, _ = _factory([])

        with caplog.at_level(logging.INFO, logger="app.services.scan_service"):
            await ScanService(client_factory=factory).scan_instance(instance)

        for transition in ("idle -> fetching", "fetching -> analyzing", "analyzing -> aggregating", "aggregating -> done"):
            assert transition in caplog.text


class TestResponseCache:
    """Raw payloads go through the Redis cache only when enabled"""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_remote_call(self, instance, analytics):
        # Setup
        factory, client = _factory([])
        cached = {"workflows": [{"id": "wf-1", "name": "(A)", "active": True}], "credentials": []}

        # Execute
        with patch("app.services.scan_service.settings") as mock_settings, \
             patch("app.services.scan_service.get_cached_resources", side_effect=lambda i, kind: cached[kind]), \
             patch("app.services.scan_service.set_cached_resources") as mock_set:
            mock_settings.n8n_api_cache_enabled = True
            result = await ScanService(client_factory=factory).scan_instance(instance)

        # Verify
        client.fetch_workflows.assert_not_called()
        client.fetch_credentials.assert_not_called()
        mock_set.assert_not_called()
        assert result.stats.workflows.active == 1

    @pytest.mark.asyncio
    async def test_cache_miss_stores_payload(self, instance, analytics):
        factory, client = _factory([{"id": "wf-1", "name": "(A)"}])

        with patch("app.services.scan_service.settings") as mock_settings, \
             patch("app.services.scan_service.get_cached_resources", return_value=None), \
             patch("app.services.scan_service.set_cached_resources") as mock_set:
            mock_settings.n8n_api_cache_enabled = True
            mock_settings.n8n_cache_ttl_minutes = 2
            await ScanService(client_factory=factory).scan_instance(instance)

        client.fetch_workflows.assert_called_once()
        mock_set.assert_any_call("inst-1", "workflows", [{"id": "wf-1", "name": "(A)"}], ttl_minutes=2)

    @pytest.mark.asyncio
    async def test_refresh_invalidates(self, instance, analytics):
        factory, _ = _factory([])

        with patch("app.services.scan_service.invalidate_instance_cache") as mock_invalidate:
            await ScanService(client_factory=factory).scan_instance(instance, refresh=True)

        mock_invalidate.assert_called_once_with("inst-1")

    @pytest.mark.asyncio
    async def test_cache_calls_run_off_the_event_loop(self, instance, analytics):
        """Test that blocking Redis calls run in a worker thread, not on the loop thread"""
        factory, _ = _factory([])
        loop_thread = threading.get_ident()
        cache_threads = []

        def record_thread(*args, **kwargs):
            cache_threads.append(threading.get_ident())

        with patch("app.services.scan_service.settings") as mock_settings, \
             patch("app.services.scan_service.get_cached_resources", side_effect=record_thread), \
             patch("app.services.scan_service.set_cached_resources", side_effect=record_thread), \
             patch("app.services.scan_service.invalidate_instance_cache", side_effect=record_thread):
            mock_settings.n8n_api_cache_enabled = True
            mock_settings.n8n_cache_ttl_minutes = 2
            await ScanService(client_factory=factory).scan_instance(instance, refresh=True)

        assert cache_threads
        assert loop_thread not in cache_threads

    @pytest.mark.asyncio
    async def test_analytics_runs_off_the_event_loop(self, instance, analytics):
        factory, _ = _factory([])
        loop_thread = threading.get_ident()
        analytics_threads = []
        analytics.log_success.side_effect = lambda **kwargs: analytics_threads.append(threading.get_ident())

        await ScanService(client_factory=factory).scan_instance(instance)

        assert len(analytics_threads) == 1
        assert analytics_threads[0] != loop_thread


class TestListCredentials:
    """Test the credential inventory used by the credentials endpoint"""

    @pytest.mark.asyncio
    async def test_inventory(self, instance, analytics, scenario_payload):
        workflows, credentials = scenario_payload
        factory, _ = _factory(workflows, credentials)

        inventory, available = await ScanService(client_factory=factory).list_credentials(instance)

        assert available is True
        assert [(c.id, c.used_by) for c in inventory] == [("cred-1", ["wf-1", "wf-2"])]
