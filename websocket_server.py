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
import logging
import uuid

import websockets
from websockets.asyncio.server import serve, ServerConnection

import protocol
from server_data import ServerData, Connection
from session_manager import SessionManager


class WebsocketConnection(Connection):
    """
    Adapts one websocket to the session manager. Outbound messages go through a
    queue drained by a writer task, so send() never blocks and keeps order.
    """

    def __init__(self, websocket: ServerConnection):
        self.connection_id = str(uuid.uuid4())
        self.session_id = None
        self.role = None
        self.is_alive = True
        self._websocket = websocket
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._write(), name=f"writer-{self.connection_id}")

    def send(self, message: dict) -> None:
        self._outbox.put_nowait(protocol.encode(message))

    async def _write(self):
        while True:
            data = await self._outbox.get()
            try:
                await self._websocket.send(data)
            except websockets.exceptions.ConnectionClosed:
                logging.debug(f"Dropped message to closed connection {self.connection_id}")
            except Exception as e:
                logging.debug(f"Could not send to {self.connection_id}: {e!r}")

    async def ping(self) -> None:
        try:
            pong_waiter = await self._websocket.ping()
        except websockets.exceptions.ConnectionClosed:
            return
        pong_waiter.add_done_callback(self._on_pong)

    def _on_pong(self, pong_waiter: asyncio.Future):
        if not pong_waiter.cancelled() and pong_waiter.exception() is None:
            self.is_alive = True

    def terminate(self) -> None:
        # no closing handshake, the peer is not answering anyway
        self._websocket.transport.abort()

    async def close(self):
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass


class WebsocketServer:

    def __init__(self, host: str, port: int, data: ServerData, manager: SessionManager):
        self._host = host
        self._port = port
        self._data = data
        self._manager = manager
        self._websocket_server = None

    @property
    def port(self) -> int:
        """The bound port, useful when configured with port 0."""
        return self._websocket_server.sockets[0].getsockname()[1]

    async def handler(self, websocket: ServerConnection):
        connection = WebsocketConnection(websocket)
        self._manager.connection_opened(connection)
        shutdown_wait_task = asyncio.create_task(self._data.shutdown_event.wait())
        try:
            while True:
                recv_task = asyncio.create_task(websocket.recv())
                done, pending = await asyncio.wait(
                    [recv_task, shutdown_wait_task],
                    return_when=asyncio.FIRST_COMPLETED
                )

                # shutdown case
                if self._data.shutdown_event.is_set():
                    recv_task.cancel()
                    await websocket.close()
                    break

                message = recv_task.result()
                self._manager.handle_message(connection.connection_id, message)
        except websockets.exceptions.ConnectionClosed as e:
            logging.debug(f"Websocket connection closed ({e.rcvd.code if e.rcvd else 'no close frame'})")
        finally:
            shutdown_wait_task.cancel()
            self._manager.connection_closed(connection.connection_id)
            await connection.close()

    async def __aenter__(self):
        logging.debug(f"Starting websocket server")
        # heartbeats are the liveness monitor's job
        self._websocket_server = await serve(self.handler, self._host or None, self._port,
                                             ping_interval=None)
        logging.info(f"Signaling server running on ws://{self._host or 'localhost'}:{self.port}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._websocket_server is not None:
            logging.debug(f"Stopping websocket server")
            self._websocket_server.close()
            await self._websocket_server.wait_closed()
            self._websocket_server = None
