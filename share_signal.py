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
import os
import signal

from config import Config, ConfigurationLoadError
from liveness import LivenessMonitor
from logger import setup_logging
from reconnection import ReconnectionSupervisor
from server_data import ServerData
from session_manager import SessionManager
from websocket_server import WebsocketServer


class ShareSignal:

    def __init__(self, config: Config):
        self._config = config
        self._data = ServerData()
        self._supervisor = ReconnectionSupervisor(self._config.grace_period)
        self._manager = SessionManager(self._data, self._supervisor)
        self._websocket_server = WebsocketServer(self._config.host, self._config.port, self._data, self._manager)
        self._liveness = LivenessMonitor(self._data, self._config.heartbeat_interval)

    def stop(self):
        self._data.shutdown_event.set()

    async def begin(self):
        logging.info("Starting ShareSignal Server")
        async with self._websocket_server:
            logging.info("Starting Liveness Monitor")
            async with self._liveness:
                try:
                    logging.info("Ctrl^C to quit")
                    await self._data.shutdown_event.wait()
                except asyncio.CancelledError:
                    logging.info("Cancelled ...")
                finally:
                    logging.info("Stopping Server ...")
                    self._data.shutdown_event.set()
        # closing connections above arms grace timers nobody will wait for
        self._manager.shutdown()


async def main():
    logging.info("Starting share signal ...")

    config = Config(os.environ.get("SHARE_SIGNAL_CONFIG", "./config.toml"))

    try:
        await config.initialize()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return

    share_signal = ShareSignal(config)
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, share_signal.stop)
    await share_signal.begin()


def run():
    setup_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
