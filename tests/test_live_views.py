import asyncio
import json

import pytest

from urbanpulse.live_views import SnapshotEvent, pump_snapshots
from urbanpulse.models import Role

from conftest import CITIZEN, OTHER_CITIZEN, create_report


async def _next(handle, timeout: float = 1.0):
    return await asyncio.wait_for(handle.__anext__(), timeout)


@pytest.mark.asyncio
async def test_admin_view_sees_everything(store, registry):
    a = await create_report(store, owner_id=CITIZEN.viewer_id)
    b = await create_report(store, owner_id=OTHER_CITIZEN.viewer_id)

    handle = registry.attach(Role.ADMINISTRATOR, "admin-1")
    snapshot = await _next(handle)

    assert snapshot.ids == [b.id, a.id]


@pytest.mark.asyncio
async def test_citizen_view_is_scoped_to_owner(store, registry):
    handle = registry.attach(Role.CITIZEN, CITIZEN.viewer_id)
    assert (await _next(handle)).reports == ()

    await create_report(store, owner_id=OTHER_CITIZEN.viewer_id)
    mine = await create_report(store, owner_id=CITIZEN.viewer_id)

    snapshot = await _next(handle)
    assert snapshot.ids == [mine.id]
    assert all(r.owner_id == CITIZEN.viewer_id for r in snapshot.reports)


@pytest.mark.asyncio
async def test_detach_is_idempotent_and_updates_counts(store, registry):
    citizen = registry.attach(Role.CITIZEN, CITIZEN.viewer_id)
    admin = registry.attach(Role.ADMINISTRATOR, "admin-1")
    assert registry.get_connections_by_role() == {"citizen": 1, "administrator": 1}
    assert store.subscription_count == 2

    registry.detach(citizen)
    registry.detach(citizen)
    admin.detach()

    assert registry.get_connection_count() == 0
    assert registry.get_connections_by_role() == {"citizen": 0, "administrator": 0}
    assert store.subscription_count == 0
    with pytest.raises(StopAsyncIteration):
        await citizen.__anext__()


@pytest.mark.asyncio
async def test_session_detaches_on_error(store, registry):
    with pytest.raises(RuntimeError):
        async with registry.session(Role.CITIZEN, CITIZEN.viewer_id) as handle:
            await _next(handle)
            raise RuntimeError("viewer went away")

    assert handle.detached
    assert registry.get_connection_count() == 0
    assert store.subscription_count == 0


@pytest.mark.asyncio
async def test_session_detaches_on_cancellation(store, registry):
    entered = asyncio.Event()

    async def viewer():
        async with registry.session(Role.CITIZEN, CITIZEN.viewer_id) as handle:
            await _next(handle)
            entered.set()
            await handle.__anext__()

    task = asyncio.create_task(viewer())
    await asyncio.wait_for(entered.wait(), 1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert registry.get_connection_count() == 0
    assert store.subscription_count == 0


@pytest.mark.asyncio
async def test_reattach_switches_scope_on_same_handle(store, registry):
    other = await create_report(store, owner_id=OTHER_CITIZEN.viewer_id)
    mine = await create_report(store, owner_id=CITIZEN.viewer_id)

    handle = registry.attach(Role.CITIZEN, CITIZEN.viewer_id)
    assert (await _next(handle)).ids == [mine.id]

    waiting = asyncio.create_task(handle.__anext__())
    await asyncio.sleep(0)
    registry.reattach(handle, Role.ADMINISTRATOR)

    snapshot = await asyncio.wait_for(waiting, 1)
    assert snapshot.ids == [mine.id, other.id]
    assert handle.role == Role.ADMINISTRATOR
    assert store.subscription_count == 1
    assert registry.get_connections_by_role() == {"citizen": 0, "administrator": 1}


@pytest.mark.asyncio
async def test_reattach_with_same_scope_does_not_redeliver(store, registry):
    await create_report(store, owner_id=CITIZEN.viewer_id)
    handle = registry.attach(Role.CITIZEN, CITIZEN.viewer_id)
    await _next(handle)

    registry.reattach(handle, Role.CITIZEN)

    with pytest.raises(asyncio.TimeoutError):
        await _next(handle, timeout=0.1)


@pytest.mark.asyncio
async def test_shutdown_detaches_everything(store, registry):
    handles = [registry.attach(Role.CITIZEN, f"citizen-{i}") for i in range(3)]

    registry.shutdown()

    assert registry.get_connection_count() == 0
    assert all(h.detached for h in handles)
    with pytest.raises(RuntimeError):
        registry.reattach(handles[0], Role.ADMINISTRATOR)


@pytest.mark.asyncio
async def test_pump_sends_snapshot_events(store, registry):
    report = await create_report(store)
    handle = registry.attach(Role.ADMINISTRATOR, "admin-1")
    sent = []

    async def send(text):
        sent.append(json.loads(text))
        handle.detach()

    await asyncio.wait_for(pump_snapshots(handle, send), 1)

    assert len(sent) == 1
    assert sent[0]["event_type"] == "snapshot"
    assert sent[0]["data"]["reports"][0]["id"] == report.id
    assert sent[0]["data"]["reports"][0]["status"] == "pending"


def test_snapshot_event_envelope():
    event = SnapshotEvent(data={"sequence": 3, "reports": []})
    payload = json.loads(event.model_dump_json())

    assert payload["event_type"] == "snapshot"
    assert "timestamp" in payload
    assert payload["data"] == {"sequence": 3, "reports": []}


@pytest.mark.asyncio
async def test_demotion_during_read_only_delivers_own_reports(store, registry):
    await create_report(store, owner_id=OTHER_CITIZEN.viewer_id)
    mine = await create_report(store, owner_id=CITIZEN.viewer_id)
    handle = registry.attach(Role.ADMINISTRATOR, CITIZEN.viewer_id)

    async with store._lock:
        pending = asyncio.create_task(handle.__anext__())
        await asyncio.sleep(0)
        registry.reattach(handle, Role.CITIZEN)

    snapshot = await asyncio.wait_for(pending, 1)
    assert snapshot.ids == [mine.id]
    assert handle.role == Role.CITIZEN


@pytest.mark.asyncio
async def test_detach_during_read_delivers_nothing(store, registry):
    await create_report(store)
    handle = registry.attach(Role.ADMINISTRATOR, "admin-1")

    async with store._lock:
        pending = asyncio.create_task(handle.__anext__())
        await asyncio.sleep(0)
        handle.detach()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(pending, 1)
