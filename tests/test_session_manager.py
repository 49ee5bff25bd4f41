"""Tests for session creation, joining, signaling relay and the control gate."""

import itertools

import pytest

import session_manager
from protocol import HOST, CLIENT
from tests.conftest import FakeConnection, deliver


def error_codes(connection):
    return [message["message"] for message in connection.of_type("error")]


class TestConnections:

    @pytest.mark.asyncio
    async def test_connected_is_sent_first(self, connect):
        connection = connect()
        assert connection.sent == [{"type": "connected", "clientId": connection.connection_id}]

    @pytest.mark.asyncio
    async def test_close_unregisters(self, manager, data, connect):
        connection = connect()
        manager.connection_closed(connection.connection_id)
        assert connection.connection_id not in data.connections

    @pytest.mark.asyncio
    async def test_messages_from_unknown_connection_are_dropped(self, manager, data):
        stranger = FakeConnection()
        deliver(manager, stranger, type="create-session")
        assert stranger.sent == []
        assert len(data.sessions) == 0


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_create(self, manager, data, connect):
        host = connect()
        deliver(manager, host, type="create-session")

        created = host.last()
        assert created["type"] == "session-created"
        assert len(created["sessionCode"]) == 6 and created["sessionCode"].isdigit()
        session = data.sessions.by_code(created["sessionCode"])
        assert session.id == created["sessionId"]
        assert session.host_connection_id == host.connection_id
        assert session.client_connection_id is None
        assert session.control_enabled is False
        assert (host.session_id, host.role) == (session.id, HOST)

    @pytest.mark.asyncio
    async def test_codes_do_not_collide_with_live_sessions(self, manager, connect, monkeypatch):
        draws = itertools.chain([111111, 111111, 111111, 222222])
        monkeypatch.setattr(session_manager.random, "randint", lambda a, b: next(draws))

        first = manager.create_session(connect())
        second = manager.create_session(connect())
        assert first.code == "111111"
        assert second.code == "222222"

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self, manager, connect):
        ids = {manager.create_session(connect()).id for _ in range(50)}
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_creating_again_releases_previous_session(self, manager, connect):
        host = connect()
        first = manager.create_session(host)
        second = manager.create_session(host)

        assert first.host_offline is True
        assert second.host_offline is False
        assert (host.session_id, host.role) == (second.id, HOST)


class TestJoinSession:

    @pytest.mark.asyncio
    async def test_join(self, manager, connect):
        host = connect()
        client = connect()
        session = manager.create_session(host)
        deliver(manager, client, type="join-session", sessionCode=session.code)

        assert client.of_type("session-joined") == [
            {"type": "session-joined", "sessionId": session.id, "sessionCode": session.code}]
        assert host.of_type("client-joined") == [{"type": "client-joined", "clientId": client.connection_id}]
        assert session.client_connection_id == client.connection_id
        assert (client.session_id, client.role) == (session.id, CLIENT)

    @pytest.mark.asyncio
    async def test_numeric_code(self, manager, connect):
        host = connect()
        client = connect()
        session = manager.create_session(host)
        deliver(manager, client, type="join-session", sessionCode=int(session.code))
        assert client.last()["type"] == "session-joined"

    @pytest.mark.asyncio
    async def test_unknown_code_mutates_nothing(self, manager, data, connect):
        host = connect()
        client = connect()
        session = manager.create_session(host)
        other_code = "100000" if session.code != "100000" else "100001"

        deliver(manager, client, type="join-session", sessionCode=other_code)

        assert error_codes(client) == ["invalid-session-code"]
        assert session.client_connection_id is None
        assert client.session_id is None
        assert len(data.sessions) == 1

    @pytest.mark.asyncio
    async def test_missing_code(self, manager, connect):
        client = connect()
        deliver(manager, client, type="join-session")
        assert error_codes(client) == ["invalid-session-code"]

    @pytest.mark.asyncio
    async def test_second_client_is_rejected(self, manager, paired, connect):
        host, client, session = paired
        late = connect()
        deliver(manager, late, type="join-session", sessionCode=session.code)

        assert error_codes(late) == ["session-already-has-client"]
        assert session.client_connection_id == client.connection_id
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_host_cannot_join_own_session(self, manager, connect):
        host = connect()
        session = manager.create_session(host)
        deliver(manager, host, type="join-session", sessionCode=session.code)
        assert error_codes(host) == ["session-already-has-client"]
        assert session.host_offline is False

    @pytest.mark.asyncio
    async def test_orphaned_session_is_collected(self, manager, data, connect):
        host = connect()
        session = manager.create_session(host)
        # the registry lost the host without a close being processed
        data.connections.unregister(host.connection_id)

        client = connect()
        deliver(manager, client, type="join-session", sessionCode=session.code)

        assert error_codes(client) == ["host-not-available"]
        assert data.sessions.by_code(session.code) is None

    @pytest.mark.asyncio
    async def test_offline_host_keeps_session(self, manager, data, connect):
        host = connect()
        session = manager.create_session(host)
        manager.connection_closed(host.connection_id)

        client = connect()
        deliver(manager, client, type="join-session", sessionCode=session.code)

        assert error_codes(client) == ["host-not-available"]
        assert data.sessions.by_code(session.code) is session


class TestSignaling:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message_type", ["offer", "answer", "ice-candidate"])
    async def test_host_to_client(self, manager, paired, message_type):
        host, client, session = paired
        deliver(manager, host, type=message_type, sessionId=session.id, payload={"sdp": "v=0"})

        assert client.sent == [{"type": message_type, "from": host.connection_id, "payload": {"sdp": "v=0"}}]
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_client_to_host(self, manager, paired):
        host, client, session = paired
        deliver(manager, client, type="answer", sessionId=session.id, payload="sdp")
        assert host.sent == [{"type": "answer", "from": client.connection_id, "payload": "sdp"}]

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager, paired):
        host, client, session = paired
        deliver(manager, host, type="offer", sessionId="nope", payload={})
        assert error_codes(host) == ["unknown-session"]
        assert client.sent == []

    @pytest.mark.asyncio
    async def test_missing_session_id(self, manager, paired):
        host, client, session = paired
        deliver(manager, host, type="offer", payload={})
        assert error_codes(host) == ["missing-sessionId"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_relay(self, manager, paired, connect):
        host, client, session = paired
        outsider = connect()
        deliver(manager, outsider, type="offer", sessionId=session.id, payload={})
        assert error_codes(outsider) == ["not-in-session"]
        assert host.sent == [] and client.sent == []

    @pytest.mark.asyncio
    async def test_peer_not_connected(self, manager, connect):
        host = connect()
        session = manager.create_session(host)
        deliver(manager, host, type="offer", sessionId=session.id, payload={})
        assert error_codes(host) == ["peer-not-connected"]


class TestControl:

    @pytest.mark.asyncio
    async def test_host_toggles_for_both(self, manager, paired):
        host, client, session = paired
        deliver(manager, host, type="toggle-control", sessionId=session.id, enabled=True)

        assert session.control_enabled is True
        assert host.sent == [{"type": "control-status", "enabled": True}]
        assert client.sent == [{"type": "control-status", "enabled": True}]

    @pytest.mark.asyncio
    async def test_enabled_is_coerced(self, manager, paired):
        host, client, session = paired
        deliver(manager, host, type="toggle-control", sessionId=session.id, enabled=1)
        assert client.last() == {"type": "control-status", "enabled": True}
        deliver(manager, host, type="toggle-control", sessionId=session.id)
        assert client.last() == {"type": "control-status", "enabled": False}

    @pytest.mark.asyncio
    async def test_client_cannot_toggle(self, manager, paired):
        host, client, session = paired
        deliver(manager, client, type="toggle-control", sessionId=session.id, enabled=True)
        assert error_codes(client) == ["not-host"]
        assert session.control_enabled is False
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_toggle_unknown_session(self, manager, paired):
        host, client, session = paired
        deliver(manager, host, type="toggle-control", sessionId="nope", enabled=True)
        assert error_codes(host) == ["unknown-session"]

    @pytest.mark.asyncio
    async def test_events_blocked_while_disabled(self, manager, paired):
        host, client, session = paired
        for enabled in (True, False):
            deliver(manager, host, type="toggle-control", sessionId=session.id, enabled=enabled)
        host.sent.clear()
        client.sent.clear()

        deliver(manager, client, type="control-event", sessionId=session.id, event={"kind": "click"})

        assert error_codes(client) == ["control-not-enabled"]
        assert host.sent == []

    @pytest.mark.asyncio
    async def test_events_forwarded_while_enabled(self, manager, paired):
        host, client, session = paired
        manager.toggle_control(host, session.id, True)
        host.sent.clear()

        deliver(manager, client, type="control-event", sessionId=session.id, event={"kind": "move", "x": 4})

        assert host.sent == [{"type": "control-event", "from": client.connection_id,
                              "event": {"kind": "move", "x": 4}}]

    @pytest.mark.asyncio
    async def test_event_without_peer(self, manager, connect):
        host = connect()
        session = manager.create_session(host)
        manager.toggle_control(host, session.id, True)
        deliver(manager, host, type="control-event", sessionId=session.id, event={})
        assert error_codes(host) == ["peer-not-connected"]


class TestMalformedInput:

    @pytest.mark.asyncio
    async def test_invalid_json(self, manager, connect):
        connection = connect()
        manager.handle_message(connection.connection_id, "{{{")
        assert error_codes(connection) == ["invalid-json"]

    @pytest.mark.asyncio
    async def test_binary_frame(self, manager, connect):
        connection = connect()
        manager.handle_message(connection.connection_id, b"\x00\x01")
        assert error_codes(connection) == ["invalid-json"]

    @pytest.mark.asyncio
    async def test_unknown_type(self, manager, connect):
        connection = connect()
        deliver(manager, connection, type="teleport")
        assert error_codes(connection) == ["unknown-type"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_keeps_connection(self, manager, data, connect, monkeypatch):
        connection = connect()

        def broken(_connection):
            raise RuntimeError("boom")

        monkeypatch.setattr(manager, "create_session", broken)
        deliver(manager, connection, type="create-session")

        assert connection.connection_id in data.connections
        assert connection.types() == ["connected"]
