import asyncio

import pytest

from exceptions import FetchFailed
from models import RelationshipState, ViewKind
from services.engine import ConnectionsEngine
from services.events import ConnectionEvent, EventKind, EventListener
from tests.fakes import FakeConnectionsApi, fail_with, make_connection, make_invitation


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        (
            {"type": "connection_request", "senderId": "u1", "notificationId": "n1"},
            ConnectionEvent(EventKind.RECEIVED, "u1", "n1"),
        ),
        (
            {
                "type": "connection_accepted",
                "sender": {"user_id": "u2"},
                "metadata": {"notificationId": "n2"},
                "message": "Bob accepted",
            },
            ConnectionEvent(EventKind.ACCEPTED, "u2", "n2", "Bob accepted"),
        ),
        (
            {"type": "connection_rejected"},
            ConnectionEvent(EventKind.REJECTED),
        ),
    ],
)
def test_event_from_payload(payload, expected):
    assert ConnectionEvent.from_payload(payload) == expected


def test_unknown_event_type_is_ignored():
    assert ConnectionEvent.from_payload({"type": "post_liked", "senderId": "u1"}) is None
    assert ConnectionEvent.from_payload({}) is None


async def test_accepted_event_moves_invitation_to_connections(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)
    assert engine.repository.state_of("u4") == RelationshipState.INCOMING_PENDING

    # на сервере u4 уже в связях
    api.invitations = []
    api.connections = [make_connection("u4", "Dana")]
    errors = await engine.handle_event({"type": "connection_accepted", "senderId": "u4"})

    assert errors == []
    assert api.count("list_invitations") == 2
    assert api.count("list_connections") == 1
    assert engine.repository.state_of("u4") == RelationshipState.CONNECTED
    assert engine.invitations() == []
    assert [r.counterparty_id for r in engine.connections()] == ["u4"]


async def test_received_event_refreshes_only_invitations(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u1", "Alice")]

    await engine.handle_event(ConnectionEvent(EventKind.RECEIVED, "u1"))

    assert api.count("list_invitations") == 1
    assert api.count("list_connections") == 0
    assert [r.counterparty_id for r in engine.invitations()] == ["u1"]


async def test_rejected_event_refreshes_invitations(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    await engine.handle_event({"type": "connection_rejected", "senderId": "u1"})

    assert [c[0] for c in api.calls] == ["list_invitations"]


async def test_event_refresh_failure_is_reported_not_raised(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u1", "Alice")]
    await engine.refresh(ViewKind.INVITATIONS)
    api.fail["list_invitations"] = fail_with(503, "unavailable")

    errors = await engine.handle_event({"type": "connection_request", "senderId": "u2"})

    assert [e.view for e in errors] == [ViewKind.INVITATIONS]
    assert engine.status(ViewKind.INVITATIONS).error == "unavailable"
    # старые данные на месте
    assert [r.counterparty_id for r in engine.invitations()] == ["u1"]


async def test_listener_worker_survives_errors_and_stops_on_cancel():
    seen: list[tuple[ViewKind, ...]] = []

    async def refresh(*kinds: ViewKind) -> list[FetchFailed]:
        seen.append(kinds)
        if len(seen) == 1:
            raise RuntimeError("boom")
        return []

    listener = EventListener(refresh)
    queue: asyncio.Queue = asyncio.Queue()
    task = asyncio.create_task(listener.run(queue))

    queue.put_nowait({"type": "connection_request"})
    queue.put_nowait({"type": "something_else"})
    queue.put_nowait(ConnectionEvent(EventKind.ACCEPTED, "u4"))
    await asyncio.wait_for(queue.join(), timeout=1)

    assert seen == [
        (ViewKind.INVITATIONS,),
        (ViewKind.INVITATIONS, ViewKind.CONNECTIONS),
    ]

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    assert task.done()


async def test_engine_listener_consumes_event_queue(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u1", "Alice")]
    engine.start_listener()

    engine.events.put_nowait({"type": "connection_request", "senderId": "u1"})
    await asyncio.wait_for(engine.events.join(), timeout=1)

    assert [r.counterparty_id for r in engine.invitations()] == ["u1"]
