"""
Read-only client for the n8n public REST API (/api/v1).

Fetches workflows and credentials and normalizes them into the canonical
shapes the scan engine works on: nodes with flat credential references,
flat string tags, and connections as a list of edges.
"""

import logging
import re
from datetime import datetime
from typing import Any

import httpx

from app.core.config import settings
from app.core.exceptions import (
    N8NAuthenticationError,
    N8NCapabilityError,
    N8NClientError,
    N8NConnectionError,
    N8NResponseError,
    N8NTimeoutError,
)
from app.schemas.credential import Credential, CredentialMetadata, CredentialSource
from app.schemas.scan import ConnectionTestResult
from app.schemas.workflow import NodePosition, Workflow, WorkflowConnection, WorkflowNode

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = (301, 302, 303, 307, 308)
# Status codes meaning "this n8n build does not expose the endpoint"
UNSUPPORTED_ENDPOINT_STATUS_CODES = (404, 405, 501)

VERSION_IN_HTML = re.compile(r"n8n@([\d.]+)")


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_tags(tags: Any) -> list[str]:
    """n8n returns tags as {id, name, ...} objects; older payloads use plain strings"""
    if not isinstance(tags, list):
        return []
    result = []
    for tag in tags:
        if isinstance(tag, str):
            name = tag
        elif isinstance(tag, dict):
            name = tag.get("name")
        else:
            name = None
        if name:
            result.append(str(name))
    return result


def normalize_node_credentials(credentials: Any) -> list[str]:
    """
    Flatten a node's credential references to plain strings.

    n8n stores them as {credentialType: {id, name}}. The remote id is used
    when present, the credential name otherwise (older exports carry names
    only). Lists of strings or {id, name} dicts are accepted as well.
    """
    if not credentials:
        return []

    if isinstance(credentials, dict):
        entries = []
        for credential_type, reference in credentials.items():
            if isinstance(reference, dict):
                entries.append(reference.get("id") or reference.get("name") or credential_type)
            elif isinstance(reference, str) and reference:
                entries.append(reference)
            else:
                entries.append(credential_type)
    elif isinstance(credentials, list):
        entries = [
            (item.get("id") or item.get("name")) if isinstance(item, dict) else item
            for item in credentials
        ]
    else:
        entries = [credentials]

    references = []
    for entry in entries:
        if entry is None or entry == "":
            continue
        reference = str(entry)
        if reference not in references:
            references.append(reference)
    return references


def normalize_position(position: Any) -> NodePosition:
    if isinstance(position, (list, tuple)) and len(position) >= 2:
        return NodePosition(x=position[0], y=position[1])
    if isinstance(position, dict):
        return NodePosition(x=position.get("x", 0), y=position.get("y", 0))
    return NodePosition()


def normalize_node(node: dict, index: int = 0) -> WorkflowNode:
    parameters = node.get("parameters")
    return WorkflowNode(
        id=str(node.get("id") or node.get("name") or f"node-{index}"),
        name=str(node.get("name") or ""),
        type=str(node.get("type") or ""),
        type_version=node.get("typeVersion"),
        position=normalize_position(node.get("position")),
        parameters=parameters if isinstance(parameters, dict) else {},
        credentials=normalize_node_credentials(node.get("credentials")),
    )


def normalize_connections(connections: Any) -> list[WorkflowConnection]:
    """
    Convert n8n's {source: {outputType: [[{node, type, index}]]}} map into edges.
    An already-flattened list of {from, to, ...} edges is passed through.
    """
    if isinstance(connections, list):
        edges = []
        for edge in connections:
            if isinstance(edge, dict) and edge.get("from") and edge.get("to"):
                edges.append(WorkflowConnection.model_validate(edge))
        return edges

    if not isinstance(connections, dict):
        return []

    edges = []
    for source, outputs in connections.items():
        if not isinstance(outputs, dict):
            continue
        for output_type, branches in outputs.items():
            if not isinstance(branches, list):
                continue
            for branch in branches:
                targets = branch if isinstance(branch, list) else [branch]
                for target in targets:
                    if not isinstance(target, dict) or not target.get("node"):
                        continue
                    edges.append(WorkflowConnection(
                        from_node=str(source),
                        to_node=str(target["node"]),
                        from_output=str(output_type),
                        to_input=str(target.get("type") or "main"),
                    ))
    return edges


def _normalize_owner(owner: Any) -> str | None:
    if isinstance(owner, dict):
        return owner.get("email") or owner.get("id")
    if owner:
        return str(owner)
    return None


def normalize_workflow(raw: dict, instance_id: str = "") -> Workflow:
    """Build a Workflow from a raw n8n payload. Malformed nodes are skipped, not fatal."""
    workflow_id = str(raw.get("id") or "")
    nodes = []
    raw_nodes = raw.get("nodes")
    for index, node in enumerate(raw_nodes if isinstance(raw_nodes, list) else []):
        if not isinstance(node, dict):
            logger.warning(f"normalize_workflow: Skipping malformed node {index} in workflow {workflow_id}")
            continue
        try:
            nodes.append(normalize_node(node, index))
        except (TypeError, ValueError) as e:
            logger.warning(f"normalize_workflow: Skipping malformed node {index} in workflow {workflow_id} - {e}")

    return Workflow(
        id=workflow_id,
        n8n_id=workflow_id,
        name=str(raw.get("name") or ""),
        description=raw.get("description"),
        is_active=bool(raw.get("active", raw.get("isActive", False))),
        nodes=nodes,
        connections=normalize_connections(raw.get("connections")),
        tags=normalize_tags(raw.get("tags")),
        owner=_normalize_owner(raw.get("owner")),
        created_at=_parse_datetime(raw.get("createdAt")),
        updated_at=_parse_datetime(raw.get("updatedAt")),
        instance_id=instance_id,
    )


def normalize_credential(raw: dict, instance_id: str = "") -> Credential:
    credential_id = str(raw.get("id") or raw.get("name") or "")
    return Credential(
        id=credential_id,
        n8n_id=credential_id,
        name=str(raw.get("name") or credential_id),
        type=str(raw.get("type") or "unknown"),
        instance_id=instance_id,
        source=CredentialSource.REMOTE,
        metadata=CredentialMetadata(
            description=raw.get("description"),
            owner=_normalize_owner(raw.get("owner")),
            tags=normalize_tags(raw.get("tags")),
            last_used=_parse_datetime(raw.get("updatedAt")),
        ),
        created_at=_parse_datetime(raw.get("createdAt")),
        updated_at=_parse_datetime(raw.get("updatedAt")),
    )


class N8NClient:
    """Async client for one n8n instance. Only issues GET requests."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float | None = None,
        page_size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v1"
        self.api_key = api_key
        self.timeout = timeout or settings.n8n_request_timeout
        self.page_size = page_size or settings.n8n_page_size
        self._transport = transport
        self.logger = logging.getLogger(__name__)

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=False,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict | None = None,
        optional: bool = False,
    ) -> httpx.Response:
        try:
            response = await client.get(
                url,
                headers={"X-N8N-API-KEY": self.api_key, "Accept": "application/json"},
                params=params,
            )
        except httpx.TimeoutException as e:
            raise N8NTimeoutError(f"Request to n8n instance timed out: {url}") from e
        except httpx.ConnectError as e:
            raise N8NConnectionError(f"Cannot connect to n8n instance at {self.base_url}: {e}") from e
        except httpx.TransportError as e:
            raise N8NConnectionError(f"Network error communicating with n8n instance: {e}") from e
        except httpx.InvalidURL as e:
            raise N8NConnectionError(f"Invalid n8n instance URL {self.base_url}: {e}") from e

        # Check for redirects (e.g., Cloudflare Access)
        if response.status_code in REDIRECT_STATUS_CODES:
            redirect_location = response.headers.get("Location", "unknown")
            self.logger.warning(
                f"_get: n8n instance returned redirect {response.status_code} to {redirect_location}. "
                "This usually indicates the instance is behind Cloudflare Access or similar authentication."
            )
            raise N8NConnectionError(
                f"n8n instance returned redirect. The instance may be behind Cloudflare Access or "
                f"require additional authentication. Redirect location: {redirect_location}",
                response.status_code,
            )

        if response.status_code in (401, 403):
            raise N8NAuthenticationError(
                "Invalid API key or insufficient permissions", response.status_code
            )

        if optional and response.status_code in UNSUPPORTED_ENDPOINT_STATUS_CODES:
            raise N8NCapabilityError(
                f"Endpoint not available on this n8n instance: {url}", response.status_code
            )

        if response.status_code == 404:
            raise N8NResponseError(
                "n8n instance not found or API endpoint not available", response.status_code
            )

        if response.status_code >= 400:
            raise N8NResponseError(
                f"n8n API error: {self._error_detail(response)}", response.status_code
            )

        return response

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
            if isinstance(body, dict):
                return body.get("message") or body.get("detail") or response.reason_phrase
        except ValueError:
            pass
        return response.text[:200] or response.reason_phrase

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise N8NResponseError(
                "n8n instance returned a non-JSON response", response.status_code
            ) from e

    async def _get_collection(self, path: str, optional: bool = False) -> list[dict]:
        """
        Fetch every page of a collection endpoint.
        Handles both {data: [...], nextCursor: "..."} and the legacy bare-array format.
        """
        items: list[dict] = []
        cursor = None
        seen_cursors = set()

        async with self._http_client() as client:
            while True:
                params: dict[str, Any] = {"limit": self.page_size}
                if cursor:
                    params["cursor"] = cursor

                response = await self._get(client, f"{self.api_url}{path}", params=params, optional=optional)
                payload = self._json(response)

                if isinstance(payload, list):
                    # Legacy format - no pagination
                    items.extend(payload)
                    break
                if not isinstance(payload, dict):
                    raise N8NResponseError(f"Unexpected response shape from {path}")

                page = payload.get("data") or []
                if not isinstance(page, list):
                    raise N8NResponseError(f"Unexpected 'data' shape from {path}")
                items.extend(page)

                cursor = payload.get("nextCursor")
                if not cursor or not page or cursor in seen_cursors:
                    break
                seen_cursors.add(cursor)

        return [item for item in items if isinstance(item, dict)]

    async def fetch_workflows(self) -> list[dict]:
        """Raw workflow payloads, all pages"""
        return await self._get_collection("/workflows")

    async def fetch_credentials(self) -> list[dict]:
        """Raw credential payloads. Raises N8NCapabilityError when the endpoint is absent."""
        return await self._get_collection("/credentials", optional=True)

    async def list_workflows(self, instance_id: str = "") -> list[Workflow]:
        self.logger.info(f"list_workflows: Entry - url: {self.base_url}")
        raw_workflows = await self.fetch_workflows()
        workflows = normalize_workflows(raw_workflows, instance_id)
        self.logger.info(f"list_workflows: Success - count: {len(workflows)}")
        return workflows

    async def list_credentials(self, instance_id: str = "") -> list[Credential]:
        self.logger.info(f"list_credentials: Entry - url: {self.base_url}")
        raw_credentials = await self.fetch_credentials()
        credentials = normalize_credentials(raw_credentials, instance_id)
        self.logger.info(f"list_credentials: Success - count: {len(credentials)}")
        return credentials

    async def get_version(self) -> str | None:
        """
        Determine the n8n version, trying in order:
        /api/v1/settings (versionCli), /healthz (version), then the root HTML page.
        """
        async with self._http_client() as client:
            try:
                response = await self._get(client, f"{self.api_url}/settings", optional=True)
                body = self._json(response)
                version = body.get("versionCli") if isinstance(body, dict) else None
                if not version and isinstance(body, dict) and isinstance(body.get("data"), dict):
                    version = body["data"].get("versionCli")
                if version:
                    return str(version)
            except N8NClientError as e:
                self.logger.debug(f"get_version: Settings endpoint failed - {e}")

            try:
                response = await self._get(client, f"{self.base_url}/healthz", optional=True)
                body = self._json(response)
                if isinstance(body, dict) and body.get("version"):
                    return str(body["version"])
            except N8NClientError as e:
                self.logger.debug(f"get_version: Healthz endpoint failed - {e}")

            try:
                response = await self._get(client, self.base_url, optional=True)
                match = VERSION_IN_HTML.search(response.text)
                if match:
                    return match.group(1)
            except N8NClientError as e:
                self.logger.debug(f"get_version: Root endpoint failed - {e}")

        self.logger.warning(f"get_version: Could not determine n8n version for {self.base_url}")
        return None

    async def test_connection(self) -> ConnectionTestResult:
        """Check that the instance is reachable and accepts the API key"""
        self.logger.info(f"test_connection: Entry - url: {self.base_url}")

        try:
            async with self._http_client() as client:
                await self._get(client, f"{self.api_url}/workflows", params={"limit": 1})
        except N8NClientError as e:
            self.logger.warning(f"test_connection: Failure - {e}")
            return ConnectionTestResult(success=False, error=str(e), error_type=e.error_type)

        version = await self.get_version()
        self.logger.info(f"test_connection: Success - url: {self.base_url}, version: {version}")
        return ConnectionTestResult(success=True, version=version)


def normalize_workflows(raw_workflows: list[dict], instance_id: str = "") -> list[Workflow]:
    workflows = []
    for raw in raw_workflows:
        try:
            workflows.append(normalize_workflow(raw, instance_id))
        except (TypeError, ValueError) as e:
            logger.warning(f"normalize_workflows: Skipping malformed workflow {raw.get('id')} - {e}")
    return workflows


def normalize_credentials(raw_credentials: list[dict], instance_id: str = "") -> list[Credential]:
    credentials = []
    for raw in raw_credentials:
        try:
            credentials.append(normalize_credential(raw, instance_id))
        except (TypeError, ValueError) as e:
            logger.warning(f"normalize_credentials: Skipping malformed credential {raw.get('id')} - {e}")
    return credentials
