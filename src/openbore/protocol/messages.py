"""Control protocol messages and newline-delimited JSON framing.

Every message is one JSON object followed by a single "\\n". The relay matches
on the serialized stream, so the key names and framing here are the wire
contract: camelCase keys, compact separators, one object per line.
"""

from __future__ import annotations

import json
import platform
import sys
import time
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from openbore.core.exceptions import ProtocolError

PROTOCOL_VERSION = "0.58.0"
FRAME_DELIMITER = b"\n"
MAX_FRAME_SIZE = 1024 * 1024

PROXY_TYPE = "https"
PROXY_REMOTE_PORT = 443


class WireModel(BaseModel):
    """Base for wire messages: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _host_os() -> str:
    return sys.platform


def _host_arch() -> str:
    return platform.machine().lower() or "unknown"


class Login(WireModel):
    """First message on the control connection."""

    type: Literal["Login"] = "Login"
    version: str = PROTOCOL_VERSION
    hostname: str = ""
    os: str = Field(default_factory=_host_os)
    arch: str = Field(default_factory=_host_arch)
    user: str = ""
    privilege_key: str = ""
    timestamp: int = Field(default_factory=lambda: int(time.time()))
    run_id: str = ""
    pool_count: int = 1
    token: str = Field(default="", repr=False)


class LoginRespContent(WireModel):
    error: str = ""


class LoginResp(WireModel):
    """Relay answer to Login. An empty error means success."""

    type: Literal["LoginResp"] = "LoginResp"
    content: LoginRespContent = Field(default_factory=LoginRespContent)

    @property
    def ok(self) -> bool:
        return self.content.error == ""


class NewProxy(WireModel):
    """Proxy registration request sent after a successful login."""

    type: Literal["NewProxy"] = "NewProxy"
    proxy_name: str
    proxy_type: str = PROXY_TYPE
    remote_port: int = PROXY_REMOTE_PORT
    custom_domains: list[str] = Field(default_factory=list)


class NewProxyRespContent(WireModel):
    proxy_id: str


class NewProxyResp(WireModel):
    """Relay answer to NewProxy carrying the proxy id."""

    type: Literal["NewProxyResp"] = "NewProxyResp"
    content: NewProxyRespContent


class NewWorkConn(WireModel):
    """First and only control message on a work connection."""

    type: Literal["NewWorkConn"] = "NewWorkConn"
    run_id: str = ""
    proxy_id: str


ControlMessage = Annotated[
    Login | LoginResp | NewProxy | NewProxyResp | NewWorkConn,
    Field(discriminator="type"),
]

MESSAGE_TYPES: dict[str, type[WireModel]] = {
    "Login": Login,
    "LoginResp": LoginResp,
    "NewProxy": NewProxy,
    "NewProxyResp": NewProxyResp,
    "NewWorkConn": NewWorkConn,
}

_control_adapter: TypeAdapter[Any] = TypeAdapter(ControlMessage)


def create_login(server_addr: str, token: str) -> Login:
    """Build the Login message. The token is the only credential."""
    return Login(hostname=server_addr, token=token)


def create_new_proxy(subdomain: str, server_addr: str) -> NewProxy:
    """Build the NewProxy registration for subdomain.server_addr."""
    return NewProxy(
        proxy_name=subdomain,
        custom_domains=[f"{subdomain}.{server_addr}"],
    )


def encode_message(msg: WireModel) -> bytes:
    """Serialize a message as one JSON line."""
    return msg.model_dump_json(by_alias=True).encode("utf-8") + FRAME_DELIMITER


def decode_message(data: bytes) -> dict[str, Any]:
    """Decode a single JSON line into a dict.

    Raises:
        ProtocolError: If the line is not a JSON object with a string type
    """
    try:
        raw = json.loads(data.decode("utf-8").strip())
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        preview = data[:50].hex()
        raise ProtocolError(f"Malformed control frame ({len(data)} bytes, {preview}): {e}") from e

    if not isinstance(raw, dict):
        raise ProtocolError(f"Control frame is not an object: {type(raw).__name__}")
    if not isinstance(raw.get("type"), str):
        raise ProtocolError("Control frame has no type")
    return raw


def parse_message(data: bytes) -> WireModel | None:
    """Decode and validate a JSON line into a typed message model.

    Returns None for a well-formed frame whose type is not one of
    MESSAGE_TYPES, so newer relay messages can be skipped.
    """
    raw = decode_message(data)
    msg_type = raw["type"]

    if msg_type not in MESSAGE_TYPES:
        return None

    try:
        return _control_adapter.validate_python(raw)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {msg_type} message: {e.error_count()} error(s)") from e


class FrameDecoder:
    """Splits a byte stream into newline-terminated frames.

    Handles frames split across reads and several frames in one read.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self._buffer = bytearray()
        self._max_frame_size = max_frame_size

    def feed(self, data: bytes) -> list[bytes]:
        """Add data and return every complete frame, delimiter included."""
        self._buffer.extend(data)
        frames: list[bytes] = []
        while True:
            index = self._buffer.find(FRAME_DELIMITER)
            if index < 0:
                break
            frames.append(bytes(self._buffer[: index + 1]))
            del self._buffer[: index + 1]

        if len(self._buffer) > self._max_frame_size:
            size = len(self._buffer)
            self._buffer.clear()
            raise ProtocolError(f"Control frame too large: {size} bytes (max: {self._max_frame_size})")
        return frames

    @property
    def pending(self) -> int:
        """Bytes buffered waiting for a delimiter."""
        return len(self._buffer)
