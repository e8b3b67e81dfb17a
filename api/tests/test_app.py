"""Tests for the FastAPI integration: middleware, dependencies and routers."""

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from testtrack.core.dependencies import get_visitor_dsl
from testtrack.main import create_app
from testtrack.routers import state
from testtrack.services.session import VisitorDSL

from conftest import VISITOR_ID

COOKIE_HEADER = {"cookie": f"tt_visitor_id={VISITOR_ID}"}


def make_client(settings, remote, queue, **kwargs) -> tuple[FastAPI, TestClient]:
    app = create_app(settings, client=remote, job_queue=queue)
    return app, TestClient(app, base_url="https://www.foo.com", **kwargs)


def set_cookies(response) -> dict[str, str]:
    return {header.split("=", 1)[0]: header for header in response.headers.get_list("set-cookie")}


class TestHealth:
    def test_health(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_health_skips_session(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/health", headers=COOKIE_HEADER)

        assert resp.status_code == 200
        assert remote.calls == []
        assert resp.headers.get_list("set-cookie") == []
        assert queue.jobs == []

    def test_other_paths_still_open_session(self, settings, remote, queue):
        app, client = make_client(settings, remote, queue)

        @app.get("/healthz")
        async def healthz():
            return {"status": "ok"}

        resp = client.get("/healthz", headers=COOKIE_HEADER)
        assert remote.calls == ["split_registry", "assignment_registry"]
        assert "tt_visitor_id" in set_cookies(resp)


class TestStateEndpoint:
    def test_state_payload(self, settings, remote, queue):
        remote.assignment_registries[VISITOR_ID] = {"bar": "foo"}
        _, client = make_client(settings, remote, queue)
        resp = client.get("/test_track/state", headers=COOKIE_HEADER)

        assert resp.status_code == 200
        assert resp.json() == {
            "url": "http://testtrack.dev",
            "cookieDomain": ".foo.com",
            "registry": {"bar": {"foo": 0, "baz": 100}},
            "assignments": {"bar": "foo"},
        }
        assert queue.jobs == []

    def test_sets_cookies(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/test_track/state", headers=COOKIE_HEADER)

        cookies = set_cookies(resp)
        visitor_cookie = cookies["tt_visitor_id"]
        assert visitor_cookie.startswith(f"tt_visitor_id={VISITOR_ID};")
        assert "Domain=.foo.com" in visitor_cookie
        assert "Secure" in visitor_cookie
        assert "HttpOnly" not in visitor_cookie
        assert "mp_fakefakefake_mixpanel" in cookies

    def test_mints_visitor_without_cookie(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/test_track/state")
        visitor_cookie = set_cookies(resp)["tt_visitor_id"]
        visitor_id = visitor_cookie.split(";", 1)[0].split("=", 1)[1]
        assert len(visitor_id) == 36


class TestAssignmentEndpoint:
    def test_assignment_notifies(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/test_track/assignments/bar", headers=COOKIE_HEADER)

        assert resp.status_code == 200
        assert resp.json() == {"split_name": "bar", "variant": "baz", "feature_gate": False}
        assert len(queue.jobs) == 1
        assert queue.jobs[0].visitor_id == VISITOR_ID
        assert queue.jobs[0].new_assignments == {"bar": "baz"}

    def test_unknown_split(self, settings, remote, queue):
        _, client = make_client(settings, remote, queue)
        resp = client.get("/test_track/assignments/missing_enabled", headers=COOKIE_HEADER)
        assert resp.json() == {"split_name": "missing_enabled", "variant": None, "feature_gate": True}
        assert queue.jobs == []


class TestFailures:
    def test_endpoint_error_still_notifies(self, settings, remote, queue):
        app, client = make_client(settings, remote, queue, raise_server_exceptions=False)

        @app.get("/boom")
        async def boom(visitor: VisitorDSL = Depends(get_visitor_dsl)):
            visitor.ab("bar", "baz")
            raise RuntimeError("boom")

        resp = client.get("/boom", headers=COOKIE_HEADER)
        assert resp.status_code == 500
        assert [job.new_assignments for job in queue.jobs] == [{"bar": "baz"}]

    def test_missing_middleware(self):
        app = FastAPI()
        app.include_router(state.router)
        resp = TestClient(app).get("/test_track/state")
        assert resp.status_code == 500
        assert resp.json()["detail"] == "TestTrackMiddleware is not installed"
