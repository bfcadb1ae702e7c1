"""
STOMP 1.2 frame codec.

Only the text subset used by the push channel is supported: frames are
carried one or more per WebSocket text message, terminated by NUL, and
bare end-of-line characters between frames are heart-beats.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

NULL = "\x00"
EOL = "\n"

# Frames whose headers are sent without escaping
_UNESCAPED_COMMANDS = {"CONNECT", "CONNECTED"}

_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n", ":": "\\c"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}
_BLANK_LINE = re.compile(r"\r?\n\r?\n")


class FrameError(ValueError):
    """Raised for data that is not a well-formed STOMP frame."""


def escape_header(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def unescape_header(value: str) -> str:
    result = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            result.append(ch)
            continue
        code = next(chars, None)
        if code not in _UNESCAPES:
            raise FrameError(f"Undefined escape sequence in header: \\{code}")
        result.append(_UNESCAPES[code])
    return "".join(result)


class Frame(BaseModel):
    """A single STOMP frame."""

    command: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    def encode(self) -> str:
        """Serialize to wire text, including the trailing NUL."""
        escape = self.command not in _UNESCAPED_COMMANDS
        lines = [self.command]
        for name, value in self.headers.items():
            if escape:
                name, value = escape_header(name), escape_header(str(value))
            lines.append(f"{name}:{value}")
        if self.body and "content-length" not in self.headers:
            lines.append(f"content-length:{len(self.body.encode('utf-8'))}")
        return EOL.join(lines) + EOL + EOL + self.body + NULL

    @classmethod
    def decode(cls, text: str) -> "Frame":
        """Parse one frame (without its trailing NUL)."""
        parts = _BLANK_LINE.split(text, maxsplit=1)
        if len(parts) == 2:
            head, body = parts
        else:
            head, body = text.rstrip("\r\n"), ""
        lines = [line.rstrip("\r") for line in head.split(EOL)]
        command = lines[0].strip()
        if not command:
            raise FrameError("Frame has no command")

        unescape = command not in _UNESCAPED_COMMANDS
        headers: Dict[str, str] = {}
        for line in lines[1:]:
            if not line:
                continue
            name, colon, value = line.partition(":")
            if not colon:
                raise FrameError(f"Malformed header line: {line!r}")
            if unescape:
                name, value = unescape_header(name), unescape_header(value)
            # First occurrence of a repeated header wins
            headers.setdefault(name, value)

        length = headers.get("content-length")
        if length is not None:
            try:
                size = int(length)
            except ValueError as err:
                raise FrameError(f"Invalid content-length: {length!r}") from err
            body = body.encode("utf-8")[:size].decode("utf-8", errors="replace")
        return cls(command=command, headers=headers, body=body)


def parse_frames(data: str) -> List[Frame]:
    """Split a WebSocket message into frames, skipping heart-beats."""
    frames = []
    for chunk in data.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if chunk:
            frames.append(Frame.decode(chunk))
    return frames


# ==================== Frame builders ====================


def connect_frame(host: str, heartbeat: str = "0,0") -> Frame:
    return Frame(
        command="CONNECT",
        headers={"accept-version": "1.2,1.1", "host": host, "heart-beat": heartbeat},
    )


def subscribe_frame(subscription_id: str, destination: str) -> Frame:
    return Frame(
        command="SUBSCRIBE",
        headers={"id": subscription_id, "destination": destination, "ack": "auto"},
    )


def unsubscribe_frame(subscription_id: str) -> Frame:
    return Frame(command="UNSUBSCRIBE", headers={"id": subscription_id})


def disconnect_frame(receipt: Optional[str] = None) -> Frame:
    headers = {"receipt": receipt} if receipt else {}
    return Frame(command="DISCONNECT", headers=headers)


def message_frame(destination: str, subscription_id: str, message_id: str, body: str) -> Frame:
    return Frame(
        command="MESSAGE",
        headers={
            "destination": destination,
            "subscription": subscription_id,
            "message-id": message_id,
            "content-type": "application/json",
        },
        body=body,
    )
