"""
Shared fixtures for bridge tests.
"""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from bridge.modules.command_coordinator import CommandCoordinator
from bridge.modules.log_buffer import RingLogBuffer
from bridge.modules.state_mirror import StateMirror
from bridge.protocol import LogEvent, Severity


def make_event(message: str, severity: Severity = Severity.INFO, stack_trace: str = "",
               timestamp: datetime = None) -> LogEvent:
    return LogEvent(
        message=message,
        stack_trace=stack_trace,
        severity=severity,
        timestamp=timestamp or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def log_buffer():
    return RingLogBuffer(capacity=10)


@pytest.fixture
def state_mirror():
    return StateMirror()


@pytest.fixture
def connection_flag():
    """Mutable connection state shared by the coordinator and façade under test."""
    return {"connected": True}


@pytest.fixture
def send_frame():
    return AsyncMock()


@pytest.fixture
def coordinator(log_buffer, send_frame, connection_flag):
    return CommandCoordinator(
        log_buffer=log_buffer,
        send_frame=send_frame,
        is_connected=lambda: connection_flag["connected"],
        timeout_seconds=0.2,
        diagnostic_tag="[EditorBridge]",
    )


@pytest.fixture
def snapshot_update_data():
    """
    Sample snapshotUpdate payload as the editor sends it.
    """
    return {
        "activeObjects": ["Main Camera", "Player"],
        "selectedObjects": ["Player"],
        "runMode": "Stopped",
        "sceneTree": [
            {"name": "Player", "components": ["Transform", "Rigidbody"], "children": [
                {"name": "Weapon", "components": ["Transform"], "children": []}
            ]}
        ],
        "assets": {
            "scripts": ["Assets/Foo.script", "Packages/com.vendor/Bar.script"],
            "prefabs": ["Assets/Player.prefab"],
            "scenes": ["Assets/Main.scene", "Packages/com.vendor/Demo.scene"],
        },
    }


@pytest.fixture
def mock_async_client_cls():
    """
    Mock of socketio.AsyncClient whose decorators record the handlers they wrap.
    """
    mock_cls = MagicMock()
    mock_instance = MagicMock()
    mock_instance.connect = AsyncMock()
    mock_instance.disconnect = AsyncMock()
    mock_instance.emit = AsyncMock()
    mock_instance._event_handlers = {}
    mock_instance._on_handlers = {}

    def event_decorator(func):
        mock_instance._event_handlers[func.__name__] = func
        return func
    mock_instance.event.side_effect = event_decorator

    def on_decorator(event_name):
        def decorator(func):
            mock_instance._on_handlers[event_name] = func
            return func
        return decorator
    mock_instance.on.side_effect = on_decorator

    mock_cls.return_value = mock_instance
    return mock_cls
