import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from urbanpulse.auth import create_access_token
from urbanpulse.database import build_engine, build_session_factory, init_db
from urbanpulse.dependencies import ReportServices, get_services
from urbanpulse.errors import PersistenceFailed
from urbanpulse.main import app
from urbanpulse.models import Role
from urbanpulse.report_store import ReportFilter, ReportStore, Snapshot

from conftest import FakeResolver, FakeUploader


class UnreadableStore(ReportStore):
    async def snapshot(self, report_filter: ReportFilter) -> Snapshot:
        raise PersistenceFailed("Could not query reports")


@pytest.fixture(name="services")
def services_fixture(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}")
    asyncio.run(init_db(engine))
    return ReportServices.build(ReportStore(build_session_factory(engine)), FakeUploader(), FakeResolver())


@pytest.fixture(name="client")
def client_fixture(services):
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def _submit(client, viewer_id, title):
    token = create_access_token(viewer_id, Role.CITIZEN)
    response = client.post(
        "/api/v1/reports",
        data={"title": title, "description": "details", "category": "Sanitation"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 201
    return response.json()


def test_connection_without_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/reports") as websocket:
            websocket.receive_text()


def test_connection_with_bad_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/reports?token=garbage") as websocket:
            websocket.receive_text()


def test_initial_snapshot_then_live_update(client):
    existing = _submit(client, "citizen-1", "Overflowing bin")
    token = create_access_token("citizen-1", Role.CITIZEN)

    with client.websocket_connect(f"/ws/reports?token={token}") as websocket:
        first = websocket.receive_json()
        assert first["event_type"] == "snapshot"
        assert [r["id"] for r in first["data"]["reports"]] == [existing["id"]]

        added = _submit(client, "citizen-1", "Blocked drain")
        update = websocket.receive_json()
        assert [r["id"] for r in update["data"]["reports"]] == [added["id"], existing["id"]]
        assert update["data"]["sequence"] > first["data"]["sequence"]


def test_ping_pong(client):
    token = create_access_token("citizen-1", Role.CITIZEN)

    with client.websocket_connect(f"/ws/reports?token={token}") as websocket:
        websocket.receive_json()
        websocket.send_text("ping")
        assert websocket.receive_text() == "pong"


def test_authorize_switches_to_admin_view(client):
    other = _submit(client, "citizen-2", "Someone else's report")
    citizen_token = create_access_token("citizen-1", Role.CITIZEN)
    admin_token = create_access_token("citizen-1", Role.ADMINISTRATOR)

    with client.websocket_connect(f"/ws/reports?token={citizen_token}") as websocket:
        assert websocket.receive_json()["data"]["reports"] == []

        websocket.send_text(json.dumps({"action": "authorize", "token": admin_token}))
        snapshot = websocket.receive_json()
        assert [r["id"] for r in snapshot["data"]["reports"]] == [other["id"]]


def test_unrecognized_message_gets_error_event(client):
    token = create_access_token("citizen-1", Role.CITIZEN)

    with client.websocket_connect(f"/ws/reports?token={token}") as websocket:
        websocket.receive_json()
        websocket.send_text("hello?")
        error = websocket.receive_json()
        assert error["event_type"] == "error"

        websocket.send_text(json.dumps({"action": "authorize", "token": "garbage"}))
        assert websocket.receive_json()["data"]["detail"] == "Invalid authentication token"


def test_snapshot_failure_sends_error_and_closes(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'broken.db'}")
    asyncio.run(init_db(engine))
    services = ReportServices.build(
        UnreadableStore(build_session_factory(engine)), FakeUploader(), FakeResolver()
    )
    token = create_access_token("citizen-1", Role.CITIZEN)

    app.dependency_overrides[get_services] = lambda: services
    try:
        with TestClient(app) as client:
            with client.websocket_connect(f"/ws/reports?token={token}") as websocket:
                error = websocket.receive_json()
                assert error["event_type"] == "error"
                assert error["data"]["detail"] == "Could not query reports"

                with pytest.raises(WebSocketDisconnect) as excinfo:
                    websocket.receive_text()
                assert excinfo.value.code == 1011
    finally:
        app.dependency_overrides.clear()
