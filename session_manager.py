"""
ShareSignal
Copyright (C) 2024 thiccaxe

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import logging
import random
import uuid
from typing import Optional

import protocol
from protocol import (
    HOST, CLIENT, ROLES, SIGNALING_TYPES, RECONNECT_TYPES,
    ProtocolError, InvalidCode, HostUnavailable, SlotOccupied, UnknownSession, NotInSession,
    PeerNotConnected, NotHost, ControlDisabled, InvalidRole, RoleAlreadyOccupied, NothingToRestore,
)
from reconnection import ReconnectionSupervisor
from server_data import ServerData, Session, Connection

"""
Session lifecycle, signaling relay and the control gate.

Every method here runs to completion without awaiting, so one message, one timer
expiry or one close is applied to the registries as a single step.
"""


def other_role(role: str) -> str:
    return CLIENT if role == HOST else HOST


class SessionManager:

    def __init__(self, data: ServerData, supervisor: ReconnectionSupervisor):
        self._data = data
        self._supervisor = supervisor
        self._handlers = {
            "create-session": self._on_create_session,
            "join-session": self._on_join_session,
            "toggle-control": self._on_toggle_control,
            "control-event": self._on_control_event,
        }
        for message_type in SIGNALING_TYPES:
            self._handlers[message_type] = self._on_signal
        for message_type in RECONNECT_TYPES:
            self._handlers[message_type] = self._on_reconnect_session

    # transport events

    def connection_opened(self, connection: Connection):
        self._data.connections.register(connection)
        logging.info(f"New connection: {connection.connection_id}")
        connection.send({"type": "connected", "clientId": connection.connection_id})

    def connection_closed(self, connection_id: str):
        connection = self._data.connections.unregister(connection_id)
        if connection is None:
            logging.warning(f"Closed connection {connection_id=} was never registered!")
            return
        logging.info(f"Connection closed: {connection_id}")
        self._release(connection)

    def handle_message(self, connection_id: str, raw):
        connection = self._data.connections.resolve(connection_id)
        if connection is None:
            logging.debug(f"Dropping message from unregistered connection {connection_id}")
            return
        try:
            message = protocol.decode(raw)
            logging.debug(f"Received message from {connection_id}: {message}")
            self._handlers[message["type"]](connection, message)
        except ProtocolError as e:
            logging.debug(f"Rejected message from {connection_id}: {e.code} {e.detail}")
            connection.send(protocol.error(e))
        except Exception as e:
            logging.exception(e)

    def shutdown(self):
        self._supervisor.cancel_all()

    # dispatch

    def _on_create_session(self, connection: Connection, message: dict):
        self.create_session(connection)

    def _on_join_session(self, connection: Connection, message: dict):
        self.join_session(connection, message["sessionCode"])

    def _on_reconnect_session(self, connection: Connection, message: dict):
        self.reconnect_session(connection, message["sessionCode"], message.get("role"))

    def _on_signal(self, connection: Connection, message: dict):
        self.relay_signal(connection, message["type"], message["sessionId"], message.get("payload"))

    def _on_toggle_control(self, connection: Connection, message: dict):
        self.toggle_control(connection, message["sessionId"], message.get("enabled"))

    def _on_control_event(self, connection: Connection, message: dict):
        self.forward_control_event(connection, message["sessionId"], message.get("event"))

    # session store

    def _new_code(self) -> str:
        while True:
            code = str(random.randint(100_000, 999_999))
            if not self._data.sessions.has_code(code):
                return code

    def _occupant(self, session: Session, role: str) -> Optional[Connection]:
        """The live connection currently holding `role` in `session`, if any."""
        connection = self._data.connections.resolve(session.slot(role))
        if connection is None or connection.session_id != session.id or connection.role != role:
            return None
        return connection

    def _peer_of(self, session: Session, connection: Connection) -> Optional[Connection]:
        role = session.role_of(connection.connection_id)
        if role is None or connection.session_id != session.id:
            raise NotInSession(session.id)
        return self._occupant(session, other_role(role))

    def _session_by_id(self, session_id: str) -> Session:
        session = self._data.sessions.by_id(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    def create_session(self, connection: Connection) -> Session:
        if connection.session_id is not None:
            self._release(connection)

        session = Session(code=self._new_code(), id=str(uuid.uuid4()),
                          host_connection_id=connection.connection_id)
        self._data.sessions.add(session)
        connection.bind(session.id, HOST)

        connection.send({"type": "session-created", "sessionCode": session.code, "sessionId": session.id})
        logging.info(f"Session {session.code} created by host {connection.connection_id}")
        return session

    def join_session(self, connection: Connection, code: str) -> Session:
        session = self._data.sessions.by_code(code)
        if session is None:
            raise InvalidCode(code)

        host = self._occupant(session, HOST)
        if host is None:
            if not session.host_offline:
                self._remove_session(session)
                logging.info(f"Session {code} removed, host connection is gone")
            raise HostUnavailable(code)

        if self._occupant(session, CLIENT) is not None or host is connection:
            raise SlotOccupied(code)

        if connection.session_id is not None:
            self._release(connection)

        if session.client_offline:
            # the previous client lost its slot to a fresh join
            self._supervisor.cancel(session.code, CLIENT, session.client_connection_id)
            session.client_offline = False

        session.client_connection_id = connection.connection_id
        connection.bind(session.id, CLIENT)

        connection.send({"type": "session-joined", "sessionId": session.id, "sessionCode": session.code})
        host.send({"type": "client-joined", "clientId": connection.connection_id})
        logging.info(f"Client {connection.connection_id} joined session {session.code}")
        return session

    def _remove_session(self, session: Session):
        self._supervisor.cancel_session(session.code)
        client = self._occupant(session, CLIENT)
        self._data.sessions.remove(session)
        if client is not None:
            client.send({"type": "host-disconnected"})
            client.bind(None, None)

    # reconnection

    def _release(self, connection: Connection):
        """Present -> Offline for whatever slot `connection` holds."""
        session = self._data.sessions.by_id(connection.session_id)
        role = connection.role
        connection.bind(None, None)
        if session is None or role is None or session.slot(role) != connection.connection_id:
            return
        if session.is_offline(role):
            return

        session.set_offline(role, True)
        if role == HOST:
            peer = self._occupant(session, CLIENT)
            if peer is not None:
                peer.send({"type": "host-offline"})
        else:
            session.control_enabled = False
            peer = self._occupant(session, HOST)
            if peer is not None:
                peer.send({"type": "client-offline", "controlEnabled": False})

        logging.info(f"{role.capitalize()} of session {session.code} offline, "
                     f"holding slot for {self._supervisor.grace_period}s")
        self._supervisor.arm(session.code, role, connection.connection_id, self._grace_expired)

    def _grace_expired(self, code: str, role: str, connection_id: str):
        """Offline -> Gone, unless the slot moved on since the timer was armed."""
        session = self._data.sessions.by_code(code)
        if session is None or session.slot(role) != connection_id or not session.is_offline(role):
            logging.debug(f"Ignoring stale grace timer for {role} of session {code}")
            return

        if role == HOST:
            self._remove_session(session)
            logging.info(f"Session {code} removed because host did not reconnect")
            return

        session.client_connection_id = None
        session.client_offline = False
        session.control_enabled = False
        host = self._occupant(session, HOST)
        if host is not None:
            host.send({"type": "client-disconnected"})
        logging.info(f"Client removed from session {code}")

    def reconnect_session(self, connection: Connection, code: str, role: Optional[str]) -> Session:
        session = self._data.sessions.by_code(code)
        if session is None:
            raise InvalidCode(code)
        if role not in ROLES:
            raise InvalidRole(str(role))
        if self._occupant(session, role) is not None or connection.session_id == session.id:
            raise RoleAlreadyOccupied(role)
        if not session.is_offline(role):
            raise NothingToRestore(role)

        if connection.session_id is not None:
            self._release(connection)

        self._supervisor.cancel(session.code, role, session.slot(role))
        session.set_slot(role, connection.connection_id)
        session.set_offline(role, False)
        connection.bind(session.id, role)

        peer = self._occupant(session, other_role(role))
        connection.send({
            "type": "session-restored",
            "sessionId": session.id,
            "sessionCode": session.code,
            "role": role,
            "controlEnabled": session.control_enabled,
            "peerConnected": peer is not None,
        })
        if peer is not None:
            peer.send({"type": f"{role}-reconnected", "clientId": connection.connection_id})
        logging.info(f"{role.capitalize()} {connection.connection_id} reconnected to session {session.code}")
        return session

    # relay

    def relay_signal(self, connection: Connection, message_type: str, session_id: str, payload):
        session = self._session_by_id(session_id)
        target = self._peer_of(session, connection)
        if target is None:
            raise PeerNotConnected(session_id)
        target.send({"type": message_type, "from": connection.connection_id, "payload": payload})
        logging.debug(f"Relayed {message_type} {connection.connection_id} -> {target.connection_id}")

    def toggle_control(self, connection: Connection, session_id: str, enabled) -> bool:
        session = self._session_by_id(session_id)
        if self._occupant(session, HOST) is not connection:
            raise NotHost(session_id)

        session.control_enabled = bool(enabled)
        for bound in self._data.connections.bound_to(session.id):
            bound.send({"type": "control-status", "enabled": session.control_enabled})
        logging.info(f"Control {'enabled' if session.control_enabled else 'disabled'} "
                     f"for session {session.code}")
        return session.control_enabled

    def forward_control_event(self, connection: Connection, session_id: str, event):
        session = self._session_by_id(session_id)
        if not session.control_enabled:
            raise ControlDisabled(session_id)
        target = self._peer_of(session, connection)
        if target is None:
            raise PeerNotConnected(session_id)
        target.send({"type": "control-event", "from": connection.connection_id, "event": event})
