"""One request/response turn of TestTrack state.

A session moves through ``unresolved -> active -> finalizing -> closed``.
The visitor is resolved lazily on first access. Leaving ``manage()``
finalizes the turn on every exit path: the identity and analytics cookies
are written to the jar, and a notification is dispatched when the turn
touched any split.
"""

from __future__ import annotations

import enum
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar
from urllib.parse import quote, unquote

from starlette.requests import Request

from testtrack.core.config import Settings
from testtrack.core.cookies import CookieJar, ResponseCookie, cookie_domain, one_year_from
from testtrack.models.assignment import Assignment
from testtrack.models.split_registry import SplitRegistry
from testtrack.models.visitor import Visitor
from testtrack.services.notifications import JobQueue, NotificationDispatcher
from testtrack.services.remote import RemoteService, RemoteServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

VISITOR_ID_PATTERN = re.compile(r"[a-z0-9-]{36}")


class SessionState(str, enum.Enum):
    unresolved = "unresolved"
    active = "active"
    finalizing = "finalizing"
    closed = "closed"


class SessionClosedError(RuntimeError):
    """The session has already been finalized."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Session:
    def __init__(
        self,
        cookies: CookieJar,
        *,
        host: str,
        secure: bool,
        client: RemoteService,
        job_queue: JobQueue,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.cookies = cookies
        self._host = host
        self._secure = secure
        self._client = client
        self._dispatcher = NotificationDispatcher(job_queue)
        self._settings = settings
        self._now = now

        self._state = SessionState.unresolved
        self._managed = False
        self._visitor: Visitor | None = None
        self._correlation: dict[str, Any] | None = None

    @classmethod
    def from_request(
        cls,
        request: Request,
        *,
        client: RemoteService,
        job_queue: JobQueue,
        settings: Settings,
    ) -> Session:
        return cls(
            CookieJar(request.cookies),
            host=request.url.hostname or "",
            secure=request.url.scheme in ("https", "wss"),
            client=client,
            job_queue=job_queue,
            settings=settings,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_visitor(self) -> Visitor:
        """The authoritative visitor; the session must already be active."""
        if self._state is SessionState.closed:
            raise SessionClosedError("session is closed")
        if self._visitor is None:
            raise RuntimeError("visitor has not been resolved yet, await Session.visitor() first")
        return self._visitor

    async def visitor(self) -> Visitor:
        if self._state is SessionState.closed:
            raise SessionClosedError("session is closed")
        if self._state is SessionState.unresolved:
            await self._resolve()
        return self._visitor

    async def visitor_dsl(self) -> VisitorDSL:
        await self.visitor()
        return VisitorDSL(self)

    async def log_in(self, identifier_type: str, value: str) -> Visitor:
        """Swap the turn's visitor for the one the identifier belongs to.

        Assignments touched on the previous visitor are dropped; the new
        visitor starts from what the API has persisted for it. Failures
        reaching the API propagate.
        """
        previous = await self.visitor()
        identity = await self._client.create_identity(identifier_type, str(value), previous.id)
        self._visitor = Visitor(
            identity.visitor_id,
            split_registry=previous.split_registry,
            assignment_registry=identity.assignment_registry,
        )
        logger.info("Visitor %s logged in as %s", previous.id, identity.visitor_id)
        return self._visitor

    async def state_hash(self) -> dict[str, Any]:
        """Payload used to hydrate client-side code; always carries all four keys."""
        visitor = await self.visitor()
        registry = visitor.split_registry
        return {
            "url": self._settings.public_api_url,
            "cookieDomain": cookie_domain(self._host),
            "registry": registry.to_dict() if registry is not None else None,
            "assignments": visitor.assignment_registry,
        }

    @asynccontextmanager
    async def manage(self) -> AsyncIterator[Session]:
        if self._managed:
            raise SessionClosedError("a session manages exactly one turn")
        self._managed = True
        try:
            yield self
        finally:
            await self._finalize()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self) -> None:
        split_registry = await self._load_split_registry()

        visitor_id = self.cookies.get(self._settings.VISITOR_COOKIE_NAME)
        if visitor_id and VISITOR_ID_PATTERN.fullmatch(visitor_id):
            assignment_registry, offline = await self._load_assignment_registry(visitor_id)
            self._visitor = Visitor(
                visitor_id,
                split_registry=split_registry,
                assignment_registry=assignment_registry,
                offline=offline,
            )
        else:
            self._visitor = Visitor(str(uuid.uuid4()), split_registry=split_registry, assignment_registry={})

        self._correlation = self._read_correlation_cookie()
        self._state = SessionState.active

    async def _load_split_registry(self) -> SplitRegistry | None:
        try:
            return await self._client.load_split_registry()
        except RemoteServiceError as exc:
            logger.warning("Split registry unavailable: %s", exc)
            return None

    async def _load_assignment_registry(self, visitor_id: str) -> tuple[dict[str, str] | None, bool]:
        try:
            return await self._client.fetch_assignment_registry(visitor_id), False
        except RemoteServiceError as exc:
            logger.warning("Assignment registry unavailable for %s, visitor is offline: %s", visitor_id, exc)
            return None, True

    def _read_correlation_cookie(self) -> dict[str, Any] | None:
        raw = self.cookies.get(self._settings.correlation_cookie_name)
        if raw is None:
            return None
        payload = unquote(raw)
        try:
            data = json.loads(payload)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("malformed mixpanel JSON from cookie %s", payload)
            return None
        return data

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def _finalize(self) -> None:
        if self._state is SessionState.closed:
            return
        if self._state is SessionState.unresolved:
            await self._resolve()
        self._state = SessionState.finalizing

        visitor = self._visitor
        new_assignments = visitor.new_assignments
        self._write_cookies(visitor.id)
        self.cookies.lock()

        if new_assignments:
            try:
                self._dispatcher.dispatch(self._correlation_distinct_id(visitor.id), visitor.id, new_assignments)
            except Exception:
                logger.exception("Failed to enqueue assignment notification for %s", visitor.id)

        self._state = SessionState.closed

    def _correlation_distinct_id(self, visitor_id: str) -> str:
        distinct_id = (self._correlation or {}).get("distinct_id")
        return distinct_id if isinstance(distinct_id, str) and distinct_id else visitor_id

    def _write_cookies(self, visitor_id: str) -> None:
        correlation = dict(self._correlation or {})
        correlation["distinct_id"] = visitor_id
        values = {
            self._settings.VISITOR_COOKIE_NAME: visitor_id,
            self._settings.correlation_cookie_name: quote(json.dumps(correlation, separators=(",", ":")), safe=""),
        }

        domain = cookie_domain(self._host)
        expires = one_year_from(self._now())
        for name, value in values.items():
            self.cookies.set(
                name,
                ResponseCookie(value=value, domain=domain, secure=self._secure, httponly=False, expires=expires),
            )


class VisitorDSL:
    """Caller-facing view of the session's current visitor.

    Always targets whichever visitor is authoritative, so it stays valid
    across ``log_in``.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def id(self) -> str:
        return self._session.current_visitor.id

    def assignment_for(self, split_name: str) -> Assignment:
        return self._session.current_visitor.assignment_for(split_name)

    def ab(self, split_name: str, true_variant: str = "true", *other_variants: str) -> bool:
        return self._session.current_visitor.ab(split_name, true_variant, *other_variants)

    def vary(self, split_name: str, handlers: Mapping[str, Callable[[], T]], default: str) -> T:
        return self._session.current_visitor.vary(split_name, handlers, default)

    async def log_in(self, identifier_type: str, value: str) -> VisitorDSL:
        await self._session.log_in(identifier_type, value)
        return self
