"""
Shared fixtures for listener integration tests.
"""

import asyncio
import random

import pytest
import uvicorn

from mock_server import create_mock_app


class _UvicornServer:
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self._task: asyncio.Task | None = None

    async def start(self):
        self._task = asyncio.create_task(self.server.serve())
        for _ in range(100):
            if self.server.started:
                return
            await asyncio.sleep(0.05)
        raise RuntimeError("Server did not start")

    async def stop(self):
        self.server.should_exit = True
        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


def _pick_port():
    return random.randint(19000, 19999)


@pytest.fixture
async def mock_server():
    """Start a mock server playing the given per-connection scripts."""
    servers: list[_UvicornServer] = []

    async def _start(scripts):
        port = _pick_port()
        app = create_mock_app(scripts)
        srv = _UvicornServer(app, "127.0.0.1", port)
        await srv.start()
        servers.append(srv)
        return f"http://127.0.0.1:{port}", app.state.mock

    yield _start

    for srv in servers:
        await srv.stop()


@pytest.fixture
def listener_config_dict(monkeypatch):
    monkeypatch.setenv("TEST_TASKDECK_PASSWORD", "pw")
    return {
        "server": {"url": "http://127.0.0.1:1", "verify_tls": False, "request_timeout_seconds": 5},
        "credentials": {"email": "listener@example.com", "password_env": "TEST_TASKDECK_PASSWORD"},
        "reconnect": {"base_delay_seconds": 0.01, "max_delay_seconds": 0.05, "max_attempts": 3},
        "heartbeat_interval_seconds": 30,
        "logging": {"level": "debug", "format": "text"},
        "metrics": {"enabled": False},
    }
