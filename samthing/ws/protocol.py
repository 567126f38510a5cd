"""Helpers for the WebSocket control protocol."""

import json
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from ..protocol import ClientMessage, Envelope, EnvelopeError


_MATCH_FIELDS = ("type", "request", "app")


def decode_envelope(raw: Union[str, bytes, bytearray]) -> Envelope:
    """Decode one wire frame into an envelope or raise `EnvelopeError`."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as error:
            raise EnvelopeError(f"frame is not utf-8: {error}") from error
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as error:
        raise EnvelopeError(f"frame is not JSON: {error}") from error
    if not isinstance(data, dict):
        raise EnvelopeError(f"frame is a {type(data).__name__}, expected an object")
    try:
        return Envelope.model_validate(data)
    except ValidationError as error:
        raise EnvelopeError(f"invalid envelope: {error.errors()[0].get('msg', error)}") from error


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to its JSON wire form, omitting unset routing tags."""
    return envelope.model_dump_json(exclude_none=True)


def _field_value(value: Any) -> Any:
    """Compare enum members by their wire value."""
    return getattr(value, "value", value)


def envelope_matches(envelope: Envelope, match: Mapping[str, Any]) -> bool:
    """Return True when every present field in `match` equals the envelope's field.

    Only `type`, `request` and `app` take part; missing or empty fields in
    `match` are wildcards.
    """
    for field in _MATCH_FIELDS:
        wanted = match.get(field)
        if not wanted:
            continue
        if getattr(envelope, field) != _field_value(wanted):
            return False
    return True


def build_manifest_reply(manifest: Mapping[str, Any], app: Optional[str] = "server") -> Envelope:
    """Build the handshake answer carrying the local client descriptor."""
    return Envelope(type=ClientMessage.MANIFEST, app=app, payload=dict(manifest))


def build_pong(payload: Any = None, app: Optional[str] = "server") -> Envelope:
    """Build the heartbeat answer for an inbound ping."""
    return Envelope(type=ClientMessage.PONG, app=app, payload=payload)
