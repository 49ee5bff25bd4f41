"""
Shared fixtures: an in-memory connection standing in for the websocket transport,
and a session manager with a short grace period.
"""

import json
import uuid

import pytest
import pytest_asyncio

from reconnection import ReconnectionSupervisor
from server_data import ServerData, Connection
from session_manager import SessionManager

GRACE = 0.05


class FakeConnection(Connection):
    """Records everything sent to it instead of writing to a socket."""

    def __init__(self, connection_id=None):
        self.connection_id = connection_id or str(uuid.uuid4())
        self.session_id = None
        self.role = None
        self.is_alive = True
        self.sent = []
        self.pings = 0
        self.terminated = False
        self.on_terminate = None

    def send(self, message: dict) -> None:
        self.sent.append(message)

    async def ping(self) -> None:
        self.pings += 1

    def terminate(self) -> None:
        self.terminated = True
        if self.on_terminate is not None:
            self.on_terminate(self.connection_id)

    def types(self):
        return [message["type"] for message in self.sent]

    def of_type(self, message_type):
        return [message for message in self.sent if message["type"] == message_type]

    def last(self):
        return self.sent[-1]


def deliver(manager, connection, **message):
    manager.handle_message(connection.connection_id, json.dumps(message))


@pytest.fixture
def data():
    return ServerData()


@pytest_asyncio.fixture
async def supervisor():
    supervisor = ReconnectionSupervisor(GRACE)
    yield supervisor
    supervisor.cancel_all()


@pytest.fixture
def manager(data, supervisor):
    return SessionManager(data, supervisor)


@pytest.fixture
def connect(manager):
    def _connect():
        connection = FakeConnection()
        connection.on_terminate = manager.connection_closed
        manager.connection_opened(connection)
        return connection

    return _connect


@pytest.fixture
def paired(manager, connect):
    """A host and a client in one session, with their outboxes cleared."""
    host = connect()
    client = connect()
    session = manager.create_session(host)
    manager.join_session(client, session.code)
    host.sent.clear()
    client.sent.clear()
    return host, client, session
