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
import os
from pathlib import Path
from typing import Optional

import aiofiles
import tomlkit
import tomlkit.exceptions
import voluptuous.error
from voluptuous import Schema, Required, Optional as Opt, All, Range, Coerce

DEFAULT_PORT = 3000
DEFAULT_GRACE_PERIOD = 120
DEFAULT_HEARTBEAT_INTERVAL = 30


class ConfigurationLoadError(Exception): pass


class Config:
    config: tomlkit.TOMLDocument
    config_opened: bool = False

    def __init__(self, config_location: Path, environ: Optional[dict] = None):
        self.config_location = Path(config_location)
        self._environ = os.environ if environ is None else environ

        self.config_schema = Schema({
            Required('server', default={}): {
                Opt('host', default=""): str,
                Opt('port', default=DEFAULT_PORT): All(Coerce(int), Range(min=0, max=65535)),
                Opt('grace_period', default=DEFAULT_GRACE_PERIOD): All(Coerce(float), Range(min=0)),
                Opt('heartbeat_interval', default=DEFAULT_HEARTBEAT_INTERVAL): All(Coerce(float), Range(min=0, min_included=False)),
            }
        })

    @staticmethod
    def port_validator(port: str) -> int:
        try:
            _port = int(port)
        except ValueError as e:
            raise voluptuous.error.Invalid(message="Invalid port.") from e
        if not 0 <= _port <= 65535:
            raise voluptuous.error.Invalid(message="Port out of range.")
        return _port

    async def initialize(self):
        try:
            async with aiofiles.open(self.config_location, 'r') as config_file:
                file_data = await config_file.read()
                self.config = tomlkit.parse(file_data)
                logging.debug("Loaded Configuration without toml format error")
                self.config_opened = True
        except FileNotFoundError:
            logging.info(f"No configuration at {self.config_location}, using defaults")
            self.config = tomlkit.document()
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {self.config_location}")
            raise ConfigurationLoadError() from e
        except tomlkit.exceptions.ParseError as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} is invalid")
            raise ConfigurationLoadError() from e

        try:
            logging.debug("Validating against Schema.")
            self.server = self.config_schema(self.config.unwrap())["server"]
            logging.debug("Validated against Schema.")
        except voluptuous.error.MultipleInvalid as e:
            logging.exception(e)
            logging.warning(f"Configuration in {self.config_location} does not match expected format")
            logging.warning(f"Issue configuration item: {e.path}")
            raise ConfigurationLoadError() from e

        if "PORT" in self._environ:
            try:
                self.server["port"] = self.port_validator(self._environ["PORT"])
            except voluptuous.error.Invalid as e:
                logging.warning(f"PORT={self._environ['PORT']!r} is not a usable port")
                raise ConfigurationLoadError() from e
            logging.debug(f"Port overridden from environment: {self.server['port']}")

        logging.info(f"Configuration loaded.")

    @property
    def host(self) -> str:
        return self.server["host"]

    @property
    def port(self) -> int:
        return self.server["port"]

    @property
    def grace_period(self) -> float:
        return self.server["grace_period"]

    @property
    def heartbeat_interval(self) -> float:
        return self.server["heartbeat_interval"]
