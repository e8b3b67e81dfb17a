from contextlib import asynccontextmanager

from fastapi import FastAPI

from testtrack.core.config import Settings, settings as default_settings
from testtrack.core.middleware import TestTrackMiddleware
from testtrack.routers import health, state
from testtrack.services.notifications import BackgroundJobQueue, JobQueue
from testtrack.services.remote import RemoteService, TestTrackClient


def create_app(
    settings: Settings | None = None,
    client: RemoteService | None = None,
    job_queue: JobQueue | None = None,
) -> FastAPI:
    """Build the app; collaborators not passed in are created on startup."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_client = None
        if getattr(app.state, "test_track_client", None) is None:
            owned_client = TestTrackClient.from_settings(settings)
            app.state.test_track_client = owned_client
        if getattr(app.state, "test_track_jobs", None) is None:
            app.state.test_track_jobs = BackgroundJobQueue(app.state.test_track_client)
        try:
            yield
        finally:
            jobs = app.state.test_track_jobs
            if isinstance(jobs, BackgroundJobQueue):
                await jobs.drain()
            if owned_client is not None:
                await owned_client.aclose()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.test_track_client = client
    app.state.test_track_jobs = job_queue

    app.add_middleware(TestTrackMiddleware, settings=settings, exclude_paths=("/health",))

    # Routers
    app.include_router(health.router)
    app.include_router(state.router)
    return app


app = create_app()
