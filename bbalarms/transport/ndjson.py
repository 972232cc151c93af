from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional

from bbalarms.domain.messages import AlarmAlert, AlarmStatusReport, CommandMessage, PeerMessage
from bbalarms.domain.models import NO_CODE


def _decode_obj(obj: Dict[str, Any], source: Optional[str] = None) -> PeerMessage:
    """
    Decode a message dictionary into a peer message object.

    Supported message types
    -----------------------
    - ``type="alarm_alert"``  -> :class:`~bbalarms.domain.messages.AlarmAlert`
    - ``type="alarm_status"`` -> :class:`~bbalarms.domain.messages.AlarmStatusReport`
    - ``type="command"``      -> :class:`~bbalarms.domain.messages.CommandMessage`

    Parameters
    ----------
    obj
        JSON-decoded dictionary that must contain a ``type`` field.
    source
        Peer name used when the message does not carry a ``source`` field.

    Returns
    -------
    PeerMessage
        Decoded message object.

    Raises
    ------
    KeyError
        If required fields for a given message type are missing.
    ValueError
        If ``type`` is unknown or if field conversions fail.
    """
    t = obj.get("type")
    src = str(obj.get("source") or source or "")

    if t == "alarm_alert":
        message = obj.get("alarm_message")
        return AlarmAlert(
            source=src,
            alarm_id=str(obj["alarm_id"]),
            state=obj["alarm_state"],
            message=None if message in (None, "n/a") else str(message),
            code=int(obj.get("alarm_code", NO_CODE)),
            testing=bool(obj.get("testing", False)),
        )

    if t == "alarm_status":
        return AlarmStatusReport(
            source=src,
            states=dict(obj["alarm_states"]),
            messages=dict(obj.get("alarm_messages") or {}),
            codes={str(k): int(v) for k, v in (obj.get("alarm_codes") or {}).items()},
            testing=bool(obj.get("testing", False)),
        )

    if t == "command":
        return CommandMessage(
            command=str(obj["command"]),
            args=list(obj.get("args") or []),
            sender=obj.get("sender"),
            target=obj.get("target"),
        )

    raise ValueError(f"Unknown message type: {t}")


def iter_json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """
    Yield one or more JSON objects found in a string.

    This function is robust against inputs where multiple JSON objects are
    accidentally concatenated without delimiters, e.g.::

        '{"a": 1}{"b": 2}'

    Only dictionary objects are yielded (non-dict JSON like lists/strings are ignored).

    Parameters
    ----------
    text
        Input string potentially containing one or more JSON objects.

    Yields
    ------
    dict
        Parsed JSON objects (dictionaries) found in the input.
    """
    s = text.strip()
    if not s:
        return

    dec = json.JSONDecoder()
    i = 0
    n = len(s)

    while i < n:
        while i < n and s[i].isspace():
            i += 1
        if i >= n:
            break

        obj, end = dec.raw_decode(s, i)
        if isinstance(obj, dict):
            yield obj
        i = end


def decode_message(line: str, source: Optional[str] = None) -> PeerMessage:
    """
    Decode an NDJSON line into a peer message.

    If the sender concatenates several JSON objects on one line, the first
    valid object is decoded.

    Raises
    ------
    ValueError
        If no JSON object is found or if the message type is unknown.
    """
    for obj in iter_json_objects(line):
        return _decode_obj(obj, source)

    raise ValueError("No JSON object found in line")


def encode_command(cmd: CommandMessage) -> str:
    """
    Encode a command as one NDJSON line (with trailing newline).
    """
    obj: Dict[str, Any] = {"type": "command", "command": cmd.command, "args": list(cmd.args)}
    if cmd.sender:
        obj["sender"] = cmd.sender
    if cmd.target:
        obj["target"] = cmd.target
    return json.dumps(obj) + "\n"


def encode_payload(payload: Dict[str, Any]) -> str:
    """
    Encode an already-built payload dictionary (e.g. a broadcast) as one line.
    """
    return json.dumps(payload, default=str) + "\n"
