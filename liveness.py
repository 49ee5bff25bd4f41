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
from typing import Optional

from server_data import ServerData


class LivenessMonitor:
    """
    Heartbeat over every open connection. A connection that has not answered the
    previous probe by the next sweep is terminated, which closes it the same way a
    peer-initiated close would.
    """
    _task: Optional[asyncio.Task] = None

    def __init__(self, data: ServerData, interval: float):
        self._data = data
        self._interval = interval

    async def sweep(self):
        for connection in self._data.connections.snapshot():
            if not connection.is_alive:
                logging.info(f"Connection {connection.connection_id} missed a heartbeat, terminating")
                connection.terminate()
                continue
            connection.is_alive = False
            await connection.ping()

    async def _run(self):
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception as e:
                logging.exception(e)

    async def start(self):
        self._task = asyncio.create_task(self._run(), name="liveness-monitor")
        logging.debug(f"Heartbeat every {self._interval}s")

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self):
        await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
