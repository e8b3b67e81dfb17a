"""HTTP client for the TestTrack API.

The API owns split configuration, persisted assignments and visitor
identifiers. Every failure talking to it, whether transport, status code
or payload shape, surfaces as ``RemoteServiceError`` so callers decide
per operation whether it is recoverable.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from testtrack.core.config import Settings
from testtrack.models.split_registry import SplitRegistry

logger = logging.getLogger(__name__)


class RemoteServiceError(Exception):
    """The TestTrack API could not be reached or returned something unusable."""


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class VisitorPayload(BaseModel):
    id: str
    assignment_registry: dict[str, str] = {}


class IdentifierResponse(BaseModel):
    visitor: VisitorPayload


class Identity(BaseModel):
    visitor_id: str
    assignment_registry: dict[str, str] = {}


class AssignmentRecord(BaseModel):
    visitor_id: str
    split_name: str
    variant: str
    mixpanel_distinct_id: str
    context: str


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class RemoteService(Protocol):
    async def load_split_registry(self) -> SplitRegistry: ...

    async def fetch_assignment_registry(self, visitor_id: str) -> dict[str, str]: ...

    async def create_identity(self, identifier_type: str, value: str, visitor_id: str) -> Identity: ...

    async def create_assignment(self, record: AssignmentRecord) -> None: ...


class TestTrackClient:
    """Async client; credentials embedded in the base URL are sent as basic auth."""

    __test__ = False

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._configured = bool(base_url)
        self._http = httpx.AsyncClient(base_url=base_url or "", timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> TestTrackClient:
        return cls(settings.TEST_TRACK_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)

    async def __aenter__(self) -> TestTrackClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self._configured:
            raise RemoteServiceError("TEST_TRACK_API_URL is not configured")
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteServiceError(f"{method} {path} failed: {exc}") from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServiceError(f"{method} {path} returned invalid JSON") from exc

    async def load_split_registry(self) -> SplitRegistry:
        payload = await self._request("GET", "/api/v1/split_registry")
        try:
            return SplitRegistry.from_payload(payload)
        except ValidationError as exc:
            raise RemoteServiceError("malformed split registry") from exc

    async def fetch_assignment_registry(self, visitor_id: str) -> dict[str, str]:
        payload = await self._request("GET", f"/api/v1/visitors/{visitor_id}")
        try:
            return VisitorPayload.model_validate(payload).assignment_registry
        except ValidationError as exc:
            raise RemoteServiceError(f"malformed visitor payload for {visitor_id}") from exc

    async def create_identity(self, identifier_type: str, value: str, visitor_id: str) -> Identity:
        payload = await self._request(
            "POST",
            "/api/v1/identifier",
            json={"identifier_type": identifier_type, "value": value, "visitor_id": visitor_id},
        )
        try:
            visitor = IdentifierResponse.model_validate(payload).visitor
        except ValidationError as exc:
            raise RemoteServiceError(f"malformed identifier response for {identifier_type}") from exc
        return Identity(visitor_id=visitor.id, assignment_registry=visitor.assignment_registry)

    async def create_assignment(self, record: AssignmentRecord) -> None:
        await self._request("POST", "/api/v1/assignment", json=record.model_dump())
        logger.debug("Recorded assignment %s=%s for %s", record.split_name, record.variant, record.visitor_id)
