"""Jira Cloud connector.

Reads issue fields and field metadata, and applies flow actions to issues
through the Jira REST API v3. Implements the FieldReader,
FieldMetadataProvider and ActionExecutor contracts used by the engine.
"""

import logging
import time
from collections.abc import Callable
from datetime import date, datetime
from typing import Any, ClassVar

import httpx

from decisionflow.connectors.base import (
    AuthenticationError,
    ConnectorError,
    FieldNotFoundError,
    NotFoundError,
    RateLimitError,
    get_setting,
)
from decisionflow.models.execution import ActionDescriptor, ActionResult
from decisionflow.models.field import FieldMetadata, FieldOption, FieldType
from decisionflow.models.flow import ActionKind

logger = logging.getLogger(__name__)

# Jira schema types mapped to simplified field types
_SCHEMA_TYPES: dict[str, FieldType] = {
    "date": FieldType.DATE,
    "datetime": FieldType.DATE,
    "option": FieldType.SELECT,
    "priority": FieldType.SELECT,
    "issuetype": FieldType.SELECT,
    "project": FieldType.SELECT,
    "string": FieldType.TEXT,
    "number": FieldType.NUMBER,
    "user": FieldType.USER,
}


def determine_field_type(schema: dict[str, Any] | None) -> FieldType:
    """Map a Jira field schema to a FieldType."""
    if not schema:
        return FieldType.UNKNOWN
    schema_type = schema.get("type")
    if schema_type == "array":
        return FieldType.MULTISELECT if schema.get("items") == "option" else FieldType.ARRAY
    return _SCHEMA_TYPES.get(schema_type, FieldType.UNKNOWN)


def extract_options(field: dict[str, Any]) -> list[FieldOption]:
    """Extract select options from a Jira field definition."""
    allowed = field.get("allowedValues")
    if isinstance(allowed, list):
        return [
            FieldOption(
                value=str(o.get("id") or o.get("value") or o.get("name")),
                label=str(o.get("name") or o.get("value")),
            )
            for o in allowed
        ]

    config = (field.get("schema") or {}).get("configuration") or {}
    options = config.get("options")
    if isinstance(options, list):
        return [
            FieldOption(
                value=str(o.get("id") or o.get("value")),
                label=str(o.get("value") or o.get("label")),
            )
            for o in options
        ]
    return []


def normalize_field_value(value: Any) -> Any:
    """Reduce Jira's value objects to comparable scalars.

    Options, priorities and similar objects become their ID (the raw option
    value), users become their account ID. Lists are normalized item by item.
    """
    if isinstance(value, list):
        return [normalize_field_value(v) for v in value]
    if isinstance(value, dict):
        for key in ("id", "accountId", "value", "name", "key"):
            if key in value:
                return value[key]
    return value


def comment_document(text: str) -> dict[str, Any]:
    """Wrap plain text in an Atlassian Document Format body."""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {
                "type": "paragraph",
                "content": [{"type": "text", "text": text}],
            }
        ],
    }


class JiraConnector:
    """Connector for Jira Cloud issues."""

    system: ClassVar[str] = "jira"
    metadata_ttl_seconds: ClassVar[float] = 300.0

    def __init__(
        self,
        base_url: str | None = None,
        email: str | None = None,
        api_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url or get_setting("JIRA_BASE_URL")
        self._email = email or get_setting("JIRA_EMAIL")
        self._api_token = api_token or get_setting("JIRA_API_TOKEN")
        self._client = client
        self._clock = clock
        self._metadata_cache: dict[str, tuple[float, FieldMetadata]] = {}

    def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure the HTTP client is initialized."""
        if self._client is None:
            if not (self._base_url and self._email and self._api_token):
                raise AuthenticationError(
                    "Jira is not configured. Set JIRA_BASE_URL, JIRA_EMAIL and "
                    "JIRA_API_TOKEN.",
                    system=self.system,
                )
            self._client = httpx.AsyncClient(
                base_url=self._base_url.rstrip("/"),
                auth=(self._email, self._api_token),
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ConnectorError(
                f"Request to Jira failed: {e}", system=self.system, retriable=True
            ) from e
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        detail = f"Jira API error {status}: {response.text[:200]}"
        if status in (401, 403):
            raise AuthenticationError(detail, system=self.system)
        if status == 404:
            raise NotFoundError(detail, system=self.system)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                detail,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                system=self.system,
            )
        raise ConnectorError(detail, system=self.system, retriable=status >= 500)

    def _json(self, response: httpx.Response, expected: type = dict) -> Any:
        try:
            body = response.json()
        except ValueError as e:
            raise ConnectorError(f"Jira returned invalid JSON: {e}", system=self.system) from e
        if not isinstance(body, expected):
            raise ConnectorError(
                f"Jira returned a {type(body).__name__} where a {expected.__name__} was expected",
                system=self.system,
            )
        return body

    # ==================== Fields ====================

    async def get_field_value(self, record_id: str, field_key: str) -> Any:
        """Read one field of an issue.

        Raises:
            FieldNotFoundError: If the issue has no such field
            ConnectorError: On transport or API failures
        """
        response = await self._request(
            "GET", f"/rest/api/3/issue/{record_id}", params={"fields": field_key}
        )
        fields = self._json(response).get("fields") or {}
        if field_key not in fields:
            raise FieldNotFoundError(
                f"Field '{field_key}' not found on {record_id}",
                field_key=field_key,
                system=self.system,
            )
        return normalize_field_value(fields[field_key])

    async def get_field_metadata(self, field_key: str) -> FieldMetadata:
        """Describe a field, cached for ``metadata_ttl_seconds``.

        Unknown fields are described as type ``unknown`` rather than raising.
        """
        cached = self._metadata_cache.get(field_key)
        if cached is not None:
            fetched_at, metadata = cached
            if self._clock() - fetched_at <= self.metadata_ttl_seconds:
                return metadata
            del self._metadata_cache[field_key]

        response = await self._request("GET", "/rest/api/3/field")
        field = next(
            (
                f
                for f in self._json(response, list)
                if isinstance(f, dict) and field_key in (f.get("key"), f.get("id"))
            ),
            None,
        )

        if field is None:
            logger.warning(f"Field {field_key} not found in Jira field list")
            metadata = FieldMetadata(field_key=field_key, name=field_key)
        else:
            field_type = determine_field_type(field.get("schema"))
            metadata = FieldMetadata(
                field_key=field.get("key") or field.get("id") or field_key,
                name=field.get("name") or field_key,
                field_type=field_type,
                options=(
                    extract_options(field)
                    if field_type in (FieldType.SELECT, FieldType.MULTISELECT)
                    else []
                ),
            )

        self._metadata_cache[field_key] = (self._clock(), metadata)
        return metadata

    # ==================== Actions ====================

    async def execute(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        """Apply an action to an issue. Failures are reported, not raised."""
        logger.info(f"Executing {action.kind.value} on {record_id}")
        try:
            if action.kind == ActionKind.SET_FIELD:
                return await self._set_field(record_id, action)
            if action.kind == ActionKind.ADD_LABEL:
                return await self._add_label(record_id, action)
            if action.kind == ActionKind.ADD_COMMENT:
                return await self._add_comment(record_id, action)
        except ConnectorError as e:
            logger.warning(f"Action {action.kind.value} failed on {record_id}: {e}")
            return ActionResult(success=False, error=str(e))

        return ActionResult(success=False, error=f"Unsupported action: {action.kind}")

    async def _set_field(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        if not action.target_field:
            return ActionResult(success=False, error="No target field given")

        value = await self._format_field_value(action.target_field, action.value)
        await self._request(
            "PUT",
            f"/rest/api/3/issue/{record_id}",
            json={"fields": {action.target_field: value}},
        )
        return ActionResult(success=True, data={"fieldKey": action.target_field, "value": value})

    async def _add_label(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        label = str(action.value)
        await self._request(
            "PUT",
            f"/rest/api/3/issue/{record_id}",
            json={"update": {"labels": [{"add": label}]}},
        )
        return ActionResult(success=True, data={"label": label})

    async def _add_comment(self, record_id: str, action: ActionDescriptor) -> ActionResult:
        response = await self._request(
            "POST",
            f"/rest/api/3/issue/{record_id}/comment",
            json={"body": comment_document(str(action.value))},
        )
        return ActionResult(success=True, data=self._json(response))

    async def _format_field_value(self, field_key: str, value: Any) -> Any:
        """Shape a resolved value the way Jira expects for the field."""
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        if value is None:
            return None

        try:
            metadata = await self.get_field_metadata(field_key)
        except ConnectorError as e:
            logger.warning(f"Sending raw value for {field_key}; metadata unavailable: {e}")
            return value

        if metadata.field_type == FieldType.SELECT:
            return {"id": str(value)}
        if metadata.field_type == FieldType.MULTISELECT:
            values = value if isinstance(value, list) else [value]
            return [{"id": str(v)} for v in values]
        return value
