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

import asyncio
import dataclasses
import datetime
from typing import Optional, Iterator

from protocol import HOST, CLIENT


class Connection:
    """
    One participant's transport, as seen by the session manager.

    Implementations must make send() non-blocking and order-preserving, and make
    terminate() lead to the same close handling as a peer-initiated close.
    """
    connection_id: str
    session_id: Optional[str] = None
    role: Optional[str] = None
    is_alive: bool = True

    def send(self, message: dict) -> None:
        raise NotImplementedError

    async def ping(self) -> None:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError

    def bind(self, session_id: Optional[str], role: Optional[str]):
        self.session_id = session_id
        self.role = role


@dataclasses.dataclass
class Session:
    code: str
    id: str
    host_connection_id: Optional[str]
    client_connection_id: Optional[str] = None
    control_enabled: bool = False
    host_offline: bool = False
    client_offline: bool = False
    created_at: str = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc).isoformat())

    def slot(self, role: str) -> Optional[str]:
        return self.host_connection_id if role == HOST else self.client_connection_id

    def set_slot(self, role: str, connection_id: Optional[str]):
        if role == HOST:
            self.host_connection_id = connection_id
        else:
            self.client_connection_id = connection_id

    def is_offline(self, role: str) -> bool:
        return self.host_offline if role == HOST else self.client_offline

    def set_offline(self, role: str, offline: bool):
        if role == HOST:
            self.host_offline = offline
        else:
            self.client_offline = offline

    def role_of(self, connection_id: str) -> Optional[str]:
        if connection_id == self.host_connection_id:
            return HOST
        if connection_id == self.client_connection_id:
            return CLIENT
        return None

    def peer_slot(self, connection_id: str) -> Optional[str]:
        """The connection id of whichever party `connection_id` is not."""
        if connection_id == self.host_connection_id:
            return self.client_connection_id
        return self.host_connection_id


class ConnectionRegistry:

    def __init__(self):
        self._connections: dict[str, Connection] = dict()

    def register(self, connection: Connection):
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> Optional[Connection]:
        return self._connections.pop(connection_id, None)

    def resolve(self, connection_id: Optional[str]) -> Optional[Connection]:
        # stale and missing ids are both just "absent"
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def is_live(self, connection_id: Optional[str]) -> bool:
        return self.resolve(connection_id) is not None

    def bound_to(self, session_id: str) -> list[Connection]:
        return [c for c in self._connections.values() if c.session_id == session_id]

    def snapshot(self) -> list[Connection]:
        return list(self._connections.values())

    def __len__(self):
        return len(self._connections)

    def __contains__(self, connection_id):
        return connection_id in self._connections


class SessionStore:

    def __init__(self):
        self._by_code: dict[str, Session] = dict()
        self._by_id: dict[str, Session] = dict()

    def add(self, session: Session):
        self._by_code[session.code] = session
        self._by_id[session.id] = session

    def remove(self, session: Session):
        if self._by_code.get(session.code) is session:
            del self._by_code[session.code]
        self._by_id.pop(session.id, None)

    def by_code(self, code: Optional[str]) -> Optional[Session]:
        return self._by_code.get(code) if code is not None else None

    def by_id(self, session_id: Optional[str]) -> Optional[Session]:
        return self._by_id.get(session_id) if session_id is not None else None

    def has_code(self, code: str) -> bool:
        return code in self._by_code

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._by_code.values()))

    def __len__(self):
        return len(self._by_code)


class ServerData:

    def __init__(self):
        self.connections = ConnectionRegistry()
        self.sessions = SessionStore()

        self.shutdown_event = asyncio.Event()
