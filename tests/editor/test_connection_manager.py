"""
Tests for the editor-side ConnectionManager.
"""

import asyncio
import logging

import pytest
import socketio
from unittest.mock import patch

from bridge.config import EditorSettings
from bridge.editor.connection_manager import ConnectionManager
from bridge.editor.log_forwarder import LogForwarder
from bridge.modules.state_mirror import StateMirror
from bridge.protocol import BRIDGE_EVENT, ConnectionState, Snapshot


@pytest.fixture
def settings():
    return EditorSettings(
        server_url="http://bridge.test:8080",
        connect_timeout_seconds=0.05,
        reconnect_interval_seconds=60,
        snapshot_interval_seconds=60,
    )


@pytest.fixture
def editor_state():
    mirror = StateMirror()
    mirror.publish(Snapshot(active_objects=("Player",)))
    return mirror


@pytest.fixture
def client_cls(mock_async_client_cls):
    with patch('bridge.editor.connection_manager.socketio.AsyncClient', mock_async_client_cls):
        yield mock_async_client_cls


@pytest.fixture
def forwarder():
    return LogForwarder(max_queue_size=10)


@pytest.fixture
def manager(settings, editor_state, client_cls, forwarder):
    return ConnectionManager(settings, editor_state, log_forwarder=forwarder)


def emitted_frames(client, frame_type=None):
    frames = [c.args[1] for c in client.emit.await_args_list if c.args[0] == BRIDGE_EVENT]
    return [f for f in frames if frame_type is None or f["type"] == frame_type]


@pytest.mark.asyncio
async def test_connect_success_publishes_snapshot(manager, client_cls):
    client = client_cls.return_value
    assert await manager.connect() is True
    assert manager.state is ConnectionState.CONNECTED
    assert manager.last_error is None
    assert client.connect.await_args.args[0] == "http://bridge.test:8080"

    await asyncio.sleep(0)
    snapshots = emitted_frames(client, "snapshotUpdate")
    assert snapshots[0]["data"]["activeObjects"] == ["Player"]

    await manager.stop()
    assert manager.state is ConnectionState.DISCONNECTED
    client.disconnect.assert_awaited()


@pytest.mark.asyncio
async def test_connect_timeout(manager, client_cls):
    async def never_connects(*args, **kwargs):
        await asyncio.sleep(10)
    client_cls.return_value.connect.side_effect = never_connects

    assert await manager.connect() is False
    assert manager.state is ConnectionState.DISCONNECTED
    assert "timed out" in manager.last_error
    client_cls.return_value.disconnect.assert_awaited()


@pytest.mark.asyncio
async def test_connect_refused(manager, client_cls):
    client_cls.return_value.connect.side_effect = socketio.exceptions.ConnectionError("refused")

    assert await manager.connect() is False
    assert manager.state is ConnectionState.DISCONNECTED
    assert "refused" in manager.last_error


@pytest.mark.asyncio
async def test_no_second_attempt_while_connecting(manager, client_cls):
    release = asyncio.Event()

    async def slow_connect(*args, **kwargs):
        await release.wait()
    client_cls.return_value.connect.side_effect = slow_connect
    manager.settings.connect_timeout_seconds = 5

    first = asyncio.create_task(manager.connect())
    await asyncio.sleep(0)
    assert manager.state is ConnectionState.CONNECTING

    assert await manager.connect() is False
    assert await manager.retry() is False
    assert client_cls.call_count == 1

    release.set()
    assert await first is True
    # Already connected: a further request is a no-op
    assert await manager.connect() is True
    assert client_cls.call_count == 1
    await manager.stop()


@pytest.mark.asyncio
async def test_stop_during_connect_discards_session(manager, client_cls):
    release = asyncio.Event()

    async def slow_connect(*args, **kwargs):
        await release.wait()
    client_cls.return_value.connect.side_effect = slow_connect
    manager.settings.connect_timeout_seconds = 5

    attempt = asyncio.create_task(manager.connect())
    await asyncio.sleep(0)
    await manager.stop()
    release.set()

    assert await attempt is False
    assert manager.state is ConnectionState.DISCONNECTED
    assert manager.client is None


@pytest.mark.asyncio
async def test_execute_command_replies_with_result(manager, client_cls, forwarder):
    client = client_cls.return_value
    await manager.connect()
    logging.getLogger("editor.scene").addHandler(forwarder)
    try:
        await client._on_handlers[BRIDGE_EVENT]({
            "type": "executeCommand",
            "data": {"commandId": "c1", "code": "import logging\nlogging.getLogger('editor.scene').warning('hi')\n6 * 7"},
        })
        await asyncio.gather(*list(manager._command_tasks))
    finally:
        logging.getLogger("editor.scene").removeHandler(forwarder)

    results = emitted_frames(client, "commandResult")
    assert len(results) == 1
    assert results[0]["data"]["commandId"] == "c1"
    assert results[0]["data"]["result"] == 42
    assert results[0]["data"]["executionSuccess"] is True

    # The log line is forwarded before the result
    frames = emitted_frames(client)
    log_index = next(i for i, f in enumerate(frames) if f["type"] == "logEvent" and f["data"]["message"] == "hi")
    assert log_index < frames.index(results[0])
    await manager.stop()


@pytest.mark.asyncio
async def test_unexpected_frames_ignored(manager, client_cls):
    client = client_cls.return_value
    await manager.connect()
    await client._on_handlers[BRIDGE_EVENT]({"type": "snapshotUpdate", "data": {}})
    await client._on_handlers[BRIDGE_EVENT]({"type": "executeCommand", "data": {"code": 5}})
    await client._on_handlers[BRIDGE_EVENT]("not json")
    assert not manager._command_tasks
    await manager.stop()


@pytest.mark.asyncio
async def test_disconnect_event_marks_disconnected(manager, client_cls):
    client = client_cls.return_value
    await manager.connect()
    publish_task = manager._publish_task

    await client._event_handlers["disconnect"]("transport close")
    await asyncio.sleep(0.01)

    assert manager.state is ConnectionState.DISCONNECTED
    assert "transport close" in manager.last_error
    assert publish_task.done()
    await manager.stop()


@pytest.mark.asyncio
async def test_send_failure_marks_disconnected(manager, client_cls):
    client = client_cls.return_value
    await manager.connect()
    client.emit.side_effect = ConnectionError("broken pipe")

    assert await manager.publish_snapshot() is False
    assert manager.state is ConnectionState.DISCONNECTED
    assert "broken pipe" in manager.last_error
    await manager.stop()


@pytest.mark.asyncio
async def test_send_while_disconnected_is_noop(manager, client_cls):
    assert await manager.send_frame({"type": "logEvent", "data": {}}) is False
    client_cls.return_value.emit.assert_not_awaited()


@pytest.mark.asyncio
async def test_reconnect_poll(manager, client_cls):
    client_cls.return_value.connect.side_effect = [socketio.exceptions.ConnectionError("down"), None]
    manager.settings.reconnect_interval_seconds = 0.01

    assert await manager.start() is False
    for _ in range(100):
        if manager.is_connected:
            break
        await asyncio.sleep(0.01)

    assert manager.is_connected
    assert client_cls.call_count == 2
    await manager.stop()


@pytest.mark.asyncio
async def test_logging_toggle(manager, forwarder):
    assert manager.logging_enabled is True
    manager.logging_enabled = False
    assert forwarder.enabled is False


@pytest.mark.asyncio
async def test_logging_toggle_without_forwarder(settings, editor_state, client_cls):
    manager = ConnectionManager(settings, editor_state)
    manager.logging_enabled = True
    assert manager.logging_enabled is False


def queue_tagged_lines(forwarder, *messages):
    script_logger = logging.getLogger("editor.flush")
    script_logger.addHandler(forwarder)
    try:
        for message in messages:
            script_logger.warning(message)
    finally:
        script_logger.removeHandler(forwarder)


@pytest.mark.asyncio
async def test_command_reply_waits_for_tick_flush_in_progress(manager, client_cls, forwarder):
    client = client_cls.return_value
    await manager.connect()
    await asyncio.sleep(0)
    client.emit.reset_mock()

    async def slow_emit(event, frame):
        if frame["type"] == "logEvent":
            await asyncio.sleep(0.01)
    client.emit.side_effect = slow_emit

    queue_tagged_lines(forwarder, "[EditorBridge] one", "[EditorBridge] two", "[EditorBridge] three")
    tick = asyncio.create_task(manager.flush_logs())
    await asyncio.sleep(0)

    await manager._run_command({"commandId": "c1", "code": "1"})
    assert await tick == 3

    assert [f["type"] for f in emitted_frames(client)] == ["logEvent", "logEvent", "logEvent", "commandResult"]
    await manager.stop()


@pytest.mark.asyncio
async def test_unsent_logs_requeued_when_send_fails(manager, client_cls, forwarder):
    client = client_cls.return_value
    await manager.connect()
    await asyncio.sleep(0)

    sends = []

    async def failing_emit(event, frame):
        sends.append(frame)
        if len(sends) == 2:
            raise ConnectionError("broken pipe")
    client.emit.side_effect = failing_emit

    queue_tagged_lines(forwarder, "first", "second", "third")
    assert await manager.flush_logs() == 1

    assert manager.state is ConnectionState.DISCONNECTED
    assert [e.message for e in forwarder.drain()] == ["second", "third"]
    await manager.stop()


@pytest.mark.asyncio
async def test_cancelled_attempt_discards_client(manager, client_cls):
    release = asyncio.Event()

    async def slow_connect(*args, **kwargs):
        await release.wait()
    client_cls.return_value.connect.side_effect = slow_connect
    manager.settings.connect_timeout_seconds = 5

    attempt = asyncio.create_task(manager.connect())
    await asyncio.sleep(0)
    attempt.cancel()
    with pytest.raises(asyncio.CancelledError):
        await attempt

    assert manager.state is ConnectionState.DISCONNECTED
    assert "cancelled" in manager.last_error
    client_cls.return_value.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_during_reconnect_attempt_discards_client(manager, client_cls):
    attempts = []

    async def connect_side_effect(*args, **kwargs):
        attempts.append(args)
        if len(attempts) == 1:
            raise socketio.exceptions.ConnectionError("down")
        await asyncio.sleep(10)
    client_cls.return_value.connect.side_effect = connect_side_effect
    manager.settings.connect_timeout_seconds = 5
    manager.settings.reconnect_interval_seconds = 0.01

    assert await manager.start() is False
    client_cls.return_value.disconnect.reset_mock()
    for _ in range(100):
        if manager.state is ConnectionState.CONNECTING:
            break
        await asyncio.sleep(0.01)
    assert manager.state is ConnectionState.CONNECTING

    await manager.stop()
    await asyncio.sleep(0.01)

    assert manager.state is ConnectionState.DISCONNECTED
    client_cls.return_value.disconnect.assert_awaited_once()
