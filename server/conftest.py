"""Shared fixtures for the card table server tests."""

import pytest

from connections import Connection


class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self, on_send=None):
        self.messages: list[dict] = []
        self.on_send = on_send

    async def send_json(self, data: dict):
        self.messages.append(data)
        if self.on_send:
            self.on_send(data)

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]

    def statuses(self) -> list[dict]:
        return self.of_type("Status")

    def last_configs(self) -> list[dict]:
        configs = self.of_type("GameConfigs")
        assert configs, "no GameConfigs received"
        return configs[-1]["configs"]


@pytest.fixture
def connect():
    """
    Factory for connections backed by a MockWebSocket.

    Pass ``on_send`` to observe each message as it is sent.
    """
    def _connect(on_send=None) -> Connection:
        return Connection(MockWebSocket(on_send))
    return _connect
