"""
Message Protocol Module

Line-delimited JSON envelopes exchanged with assistant processes, plus the
line buffer that turns raw pipe chunks into complete lines.
"""

import codecs
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class MessageType(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    RESULT = "result"


@dataclass(frozen=True)
class Message:
    """Envelope ``{"type": ..., "payload": ...}``."""
    type: MessageType
    payload: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(MessageType.USER, {"role": "user", "content": content})

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(MessageType.SYSTEM, {"content": content})


def encode_message(message: Message) -> str:
    """Serialize to one JSON line, newline included."""
    return json.dumps(message.to_dict(), ensure_ascii=False) + "\n"


def decode_line(line: str) -> Optional[Message]:
    """
    Parse one line as an envelope.

    Returns None for anything that is not a JSON object with a known ``type``.
    Without an explicit ``payload`` key the remaining fields form the payload.
    """
    try:
        data = json.loads(line)
    except (ValueError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    try:
        message_type = MessageType(data.get("type"))
    except ValueError:
        return None

    if "payload" in data:
        payload = data["payload"]
    else:
        payload = {key: value for key, value in data.items() if key != "type"}
    return Message(message_type, payload)


class LineBuffer:
    """
    Accumulates byte chunks and yields complete lines.

    A partial line (and a partial UTF-8 sequence) is kept until the next chunk
    or until :meth:`flush` at end of stream.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._pending += self._decoder.decode(b"", final=True)
        remainder, self._pending = self._pending, ""
        return [remainder.rstrip("\r")] if remainder else []

    @property
    def pending(self) -> str:
        return self._pending
