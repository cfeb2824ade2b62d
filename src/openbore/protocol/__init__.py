"""Control protocol."""

from .messages import (
    MESSAGE_TYPES,
    PROTOCOL_VERSION,
    FrameDecoder,
    Login,
    LoginResp,
    NewProxy,
    NewProxyResp,
    NewWorkConn,
    create_login,
    create_new_proxy,
    decode_message,
    encode_message,
    parse_message,
)

__all__ = [
    "MESSAGE_TYPES",
    "PROTOCOL_VERSION",
    "FrameDecoder",
    "Login",
    "LoginResp",
    "NewProxy",
    "NewProxyResp",
    "NewWorkConn",
    "create_login",
    "create_new_proxy",
    "decode_message",
    "encode_message",
    "parse_message",
]
