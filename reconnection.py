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
from typing import Callable

TimerKey = tuple[str, str, str]  # (session code, role, connection id)


class ReconnectionSupervisor:
    """
    Grace period timers for vacated session slots.

    A timer is keyed by the slot it guards and the connection that vacated it, so a
    reconnection cancels exactly its own slot's timer and never a newer one.
    """

    def __init__(self, grace_period: float):
        self.grace_period = grace_period
        self._timers: dict[TimerKey, asyncio.Task] = dict()

    def arm(self, code: str, role: str, connection_id: str, on_expire: Callable[[str, str, str], None]):
        key = (code, role, connection_id)
        self.cancel(*key)
        self._timers[key] = asyncio.create_task(self._expire_after(key, on_expire),
                                                name=f"grace-{code}-{role}")
        logging.debug(f"Armed {self.grace_period}s grace timer for {key}")

    async def _expire_after(self, key: TimerKey, on_expire):
        await asyncio.sleep(self.grace_period)
        if self._timers.get(key) is not asyncio.current_task():
            return
        del self._timers[key]
        logging.info(f"Grace period expired for {key[1]} of session {key[0]}")
        try:
            on_expire(*key)
        except Exception as e:
            logging.exception(e)

    def cancel(self, code: str, role: str, connection_id: str) -> bool:
        task = self._timers.pop((code, role, connection_id), None)
        if task is None:
            return False
        task.cancel()
        logging.debug(f"Cancelled grace timer for {(code, role, connection_id)}")
        return True

    def cancel_session(self, code: str):
        for key in [key for key in self._timers if key[0] == code]:
            self.cancel(*key)

    def cancel_all(self):
        for key in list(self._timers):
            self.cancel(*key)

    def pending(self, code: str, role: str) -> bool:
        return any(key[0] == code and key[1] == role for key in self._timers)

    def __len__(self):
        return len(self._timers)
