import asyncio

import pytest

from exceptions import ActionFailed, ConflictingAction, InvalidTransition
from models import Command, InFlightAction, RelationshipState, ViewKind
from services.engine import ConnectionsEngine
from tests.fakes import (
    FakeConnectionsApi,
    TickingClock,
    fail_with,
    make_connection,
    make_global,
    make_invitation,
    make_suggested,
    wait_for_call,
)


def _ids(records):
    return [r.counterparty_id for r in records]


async def test_accept_is_idempotent(engine: ConnectionsEngine, api: FakeConnectionsApi):
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)

    gate = api.gates["accept_connection_request"] = asyncio.Event()
    first = asyncio.create_task(engine.dispatch(Command.ACCEPT, "u4"))
    await wait_for_call(api, "accept_connection_request")

    # пока первая команда в полёте, вторая до сервера не доходит
    second = await engine.dispatch(Command.ACCEPT, "u4")
    assert second.reason == "conflict"
    assert engine.repository.get("u4").in_flight == InFlightAction.ACCEPTING

    gate.set()
    result = await first
    assert result.ok
    assert engine.repository.state_of("u4") == RelationshipState.CONNECTED

    third = await engine.dispatch(Command.ACCEPT, "u4")
    assert third.reason == "invalid_state"
    assert api.count("accept_connection_request") == 1


async def test_accept_refreshes_connections(engine: ConnectionsEngine, api: FakeConnectionsApi):
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)

    await engine.dispatch(Command.ACCEPT, "u4")

    assert api.count("list_connections") == 1
    assert _ids(engine.connections()) == ["u4"]
    assert engine.invitations() == []
    assert engine.status(ViewKind.CONNECTIONS).total == 1


async def test_send_drops_counterparty_from_recommendations_without_refetch(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.suggested = [make_suggested("u2", "Bob", "b@x.com"), make_suggested("u5", "Eve", "e@x.com")]
    await engine.refresh(ViewKind.RECOMMENDATIONS)

    result = await engine.dispatch("send", "u2")

    assert result.ok
    assert _ids(engine.recommendations()) == ["u5"]
    assert _ids(engine.sent()) == ["u2"]
    assert engine.sent()[0].profile.name == "Bob"
    assert api.count("list_recommendations") == 1


async def test_send_then_withdraw_leaves_no_record(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.suggested = [make_suggested("u3", "Carl", "c@x.com")]
    await engine.refresh(ViewKind.RECOMMENDATIONS)

    await engine.dispatch(Command.SEND, "u3")
    assert engine.repository.state_of("u3") == RelationshipState.OUTGOING_PENDING
    assert "u3" not in _ids(engine.recommendations())

    result = await engine.dispatch(Command.WITHDRAW, "u3")

    assert result.ok
    assert result.record is None
    assert "u3" not in engine.repository
    assert engine.sent() == []

    # следующий фетч рекомендаций может вернуть его обратно
    await engine.refresh(ViewKind.RECOMMENDATIONS)
    assert _ids(engine.recommendations()) == ["u3"]


async def test_reject_returns_counterparty_to_none(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u6", "Fay")]
    await engine.refresh(ViewKind.INVITATIONS)

    result = await engine.dispatch(Command.REJECT, "u6")

    assert result.ok
    assert engine.repository.state_of("u6") == RelationshipState.NONE
    assert engine.invitations() == []
    # в текущие рекомендации сам не попадает
    assert engine.recommendations() == []

    # следующий фетч рекомендаций может предложить его снова
    api.suggested = [make_suggested("u6", "Fay", "f@x.com")]
    await engine.refresh(ViewKind.RECOMMENDATIONS)
    assert _ids(engine.recommendations()) == ["u6"]


async def test_remove_connection(engine: ConnectionsEngine, api: FakeConnectionsApi):
    api.connections = [make_connection("u1", "Alice"), make_connection("u2", "Bob")]
    await engine.refresh(ViewKind.CONNECTIONS)

    result = await engine.dispatch(Command.REMOVE, "u1")

    assert result.ok
    assert "u1" not in engine.repository
    assert _ids(engine.connections()) == ["u2"]
    assert engine.status(ViewKind.CONNECTIONS).total == 1


async def test_failed_command_rolls_back_and_keeps_error(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.suggested = [make_suggested("u2", "Bob", "b@x.com")]
    await engine.refresh(ViewKind.RECOMMENDATIONS)
    api.fail["send_connection_request"] = fail_with(409, "Request already exists")

    result = await engine.dispatch(Command.SEND, "u2")

    assert result.reason == "failed"
    assert result.message == "Request already exists"
    assert engine.action_errors == {"u2": "Request already exists"}
    record = engine.repository.get("u2")
    assert record.state == RelationshipState.NONE
    assert record.in_flight is None
    assert _ids(engine.recommendations()) == ["u2"]

    del api.fail["send_connection_request"]
    assert (await engine.dispatch(Command.SEND, "u2")).ok
    assert engine.action_errors == {}


async def test_failed_send_to_unknown_counterparty_leaves_nothing(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.fail["send_connection_request"] = fail_with(500, "boom")

    result = await engine.dispatch(Command.SEND, "u9")

    assert result.reason == "failed"
    assert "u9" not in engine.repository


async def test_invalid_transitions(engine: ConnectionsEngine, api: FakeConnectionsApi):
    api.connections = [make_connection("u1", "Alice")]
    await engine.refresh(ViewKind.CONNECTIONS)

    assert (await engine.dispatch(Command.SEND, "u1")).reason == "invalid_state"
    assert (await engine.dispatch(Command.WITHDRAW, "u1")).reason == "invalid_state"
    assert (await engine.dispatch(Command.ACCEPT, "nobody")).reason == "invalid_state"
    assert (await engine.dispatch(Command.SEND, "me")).reason == "invalid_state"
    assert api.count("send_connection_request") == 0
    assert "nobody" not in engine.repository


async def test_fetch_during_command_does_not_resurrect_pending_state(
    engine: ConnectionsEngine, api: FakeConnectionsApi
):
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)

    gate = api.gates["accept_connection_request"] = asyncio.Event()
    task = asyncio.create_task(engine.dispatch(Command.ACCEPT, "u4"))
    await wait_for_call(api, "accept_connection_request")

    # устаревший фетч приглашений приходит, пока идёт принятие
    await engine.refresh(ViewKind.INVITATIONS)
    assert engine.pipeline.deferred_count("u4") == 1

    gate.set()
    assert (await task).ok
    assert engine.repository.state_of("u4") == RelationshipState.CONNECTED
    assert engine.invitations() == []
    assert engine.pipeline.deferred_count("u4") == 0


async def test_confirmation_window_keeps_record_tagged(api: FakeConnectionsApi):
    engine = ConnectionsEngine(api, current_user_id="me", settle_delay=0.05, search_debounce=0)
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)

    task = asyncio.create_task(engine.dispatch(Command.ACCEPT, "u4"))
    await wait_for_call(api, "accept_connection_request")
    await asyncio.sleep(0.01)

    record = engine.repository.get("u4")
    assert record.confirmed is True
    assert record.in_flight == InFlightAction.ACCEPTING
    # другие операции в окне подтверждения не блокируются
    assert await engine.refresh(ViewKind.RECOMMENDATIONS) == []

    assert (await task).ok
    assert engine.repository.get("u4").in_flight is None
    await engine.aclose()


async def test_action_handlers_raise_typed_errors(engine: ConnectionsEngine, api: FakeConnectionsApi):
    api.invitations = [make_invitation("u4", "Dana")]
    await engine.refresh(ViewKind.INVITATIONS)

    with pytest.raises(InvalidTransition):
        await engine.actions.execute(Command.REMOVE, "u4")

    api.fail["reject_connection_request"] = fail_with(500, "down")
    with pytest.raises(ActionFailed) as exc_info:
        await engine.actions.execute(Command.REJECT, "u4")
    assert exc_info.value.counterparty_id == "u4"

    engine.repository.get("u4").in_flight = InFlightAction.ACCEPTING
    with pytest.raises(ConflictingAction):
        await engine.actions.execute(Command.ACCEPT, "u4")


async def test_sent_snapshot_requested_before_send_keeps_new_request(api: FakeConnectionsApi):
    engine = ConnectionsEngine(
        api, current_user_id="me", settle_delay=0, search_debounce=0, clock=TickingClock()
    )
    api.suggested = [make_suggested("u3", "Carl", "c@x.com")]
    await engine.refresh(ViewKind.RECOMMENDATIONS)

    gate = api.gates["list_sent_requests"] = asyncio.Event()
    slow = asyncio.create_task(engine.refresh(ViewKind.SENT))
    await wait_for_call(api, "list_sent_requests")

    assert (await engine.dispatch(Command.SEND, "u3")).ok
    assert engine.repository.state_of("u3") == RelationshipState.OUTGOING_PENDING

    # пустой список отправленных, запрошенный до отправки, приходит последним
    gate.set()
    assert await slow == []

    assert engine.repository.state_of("u3") == RelationshipState.OUTGOING_PENDING
    assert _ids(engine.sent()) == ["u3"]
    assert engine.pipeline.filter_search_results([make_global("u3", "Carl")]) == []
    await engine.aclose()


async def test_connections_page_requested_before_remove_does_not_restore_it(
    api: FakeConnectionsApi,
):
    engine = ConnectionsEngine(
        api, current_user_id="me", settle_delay=0, search_debounce=0, clock=TickingClock()
    )
    api.connections = [make_connection("u1", "Alice"), make_connection("u2", "Bob")]
    await engine.refresh(ViewKind.CONNECTIONS)

    gate = api.gates["list_connections"] = asyncio.Event()
    slow = asyncio.create_task(engine.refresh(ViewKind.CONNECTIONS))
    await wait_for_call(api, "list_connections", times=2)
    # перефетч после удаления уже не ждёт
    del api.gates["list_connections"]

    assert (await engine.dispatch(Command.REMOVE, "u1")).ok
    assert _ids(engine.connections()) == ["u2"]

    gate.set()
    assert await slow == []

    assert "u1" not in engine.repository
    assert _ids(engine.connections()) == ["u2"]
    assert engine.status(ViewKind.CONNECTIONS).total == 1

    # более поздний снимок снова может его вернуть
    api.connections.append(make_connection("u1", "Alice"))
    await engine.refresh(ViewKind.CONNECTIONS)
    assert sorted(_ids(engine.connections())) == ["u1", "u2"]
    await engine.aclose()
