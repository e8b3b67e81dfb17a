from collections.abc import Sequence

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from testtrack.core.config import Settings
from testtrack.services.session import Session


class TestTrackMiddleware(BaseHTTPMiddleware):
    """Wrap each request in one TestTrack session turn.

    The session is available to endpoints as ``request.state.test_track``.
    When the endpoint raises, the turn is still finalized (assignments are
    reported) but no cookies are written since there is no response.

    Requests under ``exclude_paths`` pass through untouched: no visitor is
    resolved, the API is not called and no cookies are set.
    """

    __test__ = False

    def __init__(self, app, settings: Settings, exclude_paths: Sequence[str] = ("/health",)) -> None:
        super().__init__(app)
        self.settings = settings
        self.exclude_paths = tuple(exclude_paths)

    def _excluded(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in self.exclude_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._excluded(request.url.path):
            return await call_next(request)

        session = Session.from_request(
            request,
            client=request.app.state.test_track_client,
            job_queue=request.app.state.test_track_jobs,
            settings=self.settings,
        )
        request.state.test_track = session

        async with session.manage():
            response = await call_next(request)

        session.cookies.apply(response)
        return response
