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

import json

import voluptuous.error
from voluptuous import Schema, Required, Any, All, ALLOW_EXTRA, Coerce

HOST = "host"
CLIENT = "client"
ROLES = (HOST, CLIENT)

SIGNALING_TYPES = ("offer", "answer", "ice-candidate")
RECONNECT_TYPES = ("reconnect-session", "restore-session")


class ProtocolError(Exception):
    """
    Precondition violated by an inbound message. Replied to the sender as
    {"type": "error", "message": code}, never mutates state.
    """
    code = "error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail


class InvalidJson(ProtocolError): code = "invalid-json"
class MalformedMessage(ProtocolError): code = "malformed-message"
class UnknownType(ProtocolError): code = "unknown-type"
class InvalidCode(ProtocolError): code = "invalid-session-code"
class HostUnavailable(ProtocolError): code = "host-not-available"
class SlotOccupied(ProtocolError): code = "session-already-has-client"
class MissingSessionId(ProtocolError): code = "missing-sessionId"
class UnknownSession(ProtocolError): code = "unknown-session"
class NotInSession(ProtocolError): code = "not-in-session"
class PeerNotConnected(ProtocolError): code = "peer-not-connected"
class NotHost(ProtocolError): code = "not-host"
class ControlDisabled(ProtocolError): code = "control-not-enabled"
class InvalidRole(ProtocolError): code = "invalid-role"
class RoleAlreadyOccupied(ProtocolError): code = "role-already-occupied"
class NothingToRestore(ProtocolError): code = "nothing-to-restore"


# numeric codes are accepted and looked up as strings
session_code = Any(str, All(int, Coerce(str)))

# per-type schema, and the error raised when it does not match
MESSAGE_SCHEMAS = {
    "create-session": (Schema({}, extra=ALLOW_EXTRA), MalformedMessage),
    "join-session": (Schema({Required("sessionCode"): session_code}, extra=ALLOW_EXTRA), InvalidCode),
    "offer": (Schema({Required("sessionId"): str}, extra=ALLOW_EXTRA), MissingSessionId),
    "answer": (Schema({Required("sessionId"): str}, extra=ALLOW_EXTRA), MissingSessionId),
    "ice-candidate": (Schema({Required("sessionId"): str}, extra=ALLOW_EXTRA), MissingSessionId),
    "toggle-control": (Schema({Required("sessionId"): str}, extra=ALLOW_EXTRA), UnknownSession),
    "control-event": (Schema({Required("sessionId"): str}, extra=ALLOW_EXTRA), UnknownSession),
    "reconnect-session": (Schema({Required("sessionCode"): session_code}, extra=ALLOW_EXTRA), InvalidCode),
    "restore-session": (Schema({Required("sessionCode"): session_code}, extra=ALLOW_EXTRA), InvalidCode),
}


def decode(raw) -> dict:
    """Parse one inbound frame into a message with a known "type"."""
    if not isinstance(raw, str):
        raise InvalidJson("binary frame")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidJson(str(e)) from e
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise MalformedMessage("no type")
    if message["type"] not in MESSAGE_SCHEMAS:
        raise UnknownType(message["type"])

    schema, error = MESSAGE_SCHEMAS[message["type"]]
    try:
        return schema(message)
    except voluptuous.error.Invalid as e:
        raise error(str(e)) from e


def encode(message: dict) -> str:
    return json.dumps(message)


def error(exc: ProtocolError) -> dict:
    return {"type": "error", "message": exc.code}
