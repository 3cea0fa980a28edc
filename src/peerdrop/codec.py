"""
Transfer codec for the peer channel.

Three control records travel as JSON text frames::

    {"type": "text", "id": ..., "content": ..., "timestamp": ...}
    {"type": "file-meta", "payload": {"name": ..., "size": ..., "type": ...}}
    {"type": "file-end"}

File bytes travel as raw binary frames with no header. A file is always
``file-meta``, zero or more binary frames, then ``file-end``; the channel's
in-order delivery is what ties the chunks to the announcement.

Decoding never raises. Text that is not JSON becomes an ad-hoc text
message from the peer, and anything else that cannot be understood is
returned as an :class:`IgnoredFrame`.
"""

import json
import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .messages import FileInfo, Sender, TextMessage, new_message_id, now_ms

logger = logging.getLogger(__name__)


class FrameType(Enum):
    """Kinds of inbound frames"""
    TEXT = "text"
    FILE_META = "file-meta"
    FILE_END = "file-end"
    CHUNK = "chunk"
    IGNORED = "ignored"


@dataclass
class TextFrame:
    """A text message from the peer"""
    content: str
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)
    # True when the frame was not a JSON record but raw text
    fallback: bool = False
    type: FrameType = field(default=FrameType.TEXT, init=False)

    def to_message(self) -> TextMessage:
        return TextMessage(
            content=self.content,
            sender=Sender.REMOTE,
            id=self.id,
            timestamp=self.timestamp
        )


@dataclass
class FileMetaFrame:
    """Start of a file transfer"""
    info: FileInfo
    type: FrameType = field(default=FrameType.FILE_META, init=False)


@dataclass
class FileEndFrame:
    """End of the file transfer in flight"""
    type: FrameType = field(default=FrameType.FILE_END, init=False)


@dataclass
class ChunkFrame:
    """One binary slice of a file"""
    data: bytes
    type: FrameType = field(default=FrameType.CHUNK, init=False)


@dataclass
class IgnoredFrame:
    """Structured record that is not part of the protocol"""
    reason: str
    type: FrameType = field(default=FrameType.IGNORED, init=False)


Frame = Union[TextFrame, FileMetaFrame, FileEndFrame, ChunkFrame, IgnoredFrame]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_text(message: TextMessage) -> str:
    return json.dumps({
        "type": FrameType.TEXT.value,
        "id": message.id,
        "content": message.content,
        "timestamp": message.timestamp
    })


def encode_file_meta(info: FileInfo) -> str:
    return json.dumps({
        "type": FrameType.FILE_META.value,
        "payload": info.to_dict()
    })


def encode_file_end() -> str:
    return json.dumps({"type": FrameType.FILE_END.value})


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_frame(unit: Union[str, bytes, bytearray, memoryview]) -> Frame:
    """
    Classify one inbound channel unit.

    Args:
        unit: A text or binary frame as delivered by the channel

    Returns:
        The decoded frame; never raises
    """
    if isinstance(unit, (bytes, bytearray, memoryview)):
        return ChunkFrame(data=bytes(unit))

    if not isinstance(unit, str):
        return IgnoredFrame(reason=f"unsupported unit type {type(unit).__name__}")

    try:
        record = json.loads(unit, parse_constant=_reject_constant)
    except ValueError:
        # Not a control record: plain text from a non-protocol peer
        return TextFrame(content=unit, fallback=True)

    if not isinstance(record, dict):
        return IgnoredFrame(reason=f"record is a {type(record).__name__}, not an object")

    kind = record.get("type")
    if kind == FrameType.TEXT.value:
        return _decode_text(record)
    if kind == FrameType.FILE_META.value:
        return _decode_file_meta(record)
    if kind == FrameType.FILE_END.value:
        return FileEndFrame()
    return IgnoredFrame(reason=f"unknown record type {kind!r}")


def _reject_constant(name: str):
    # NaN and Infinity are not JSON; such text takes the plain-text path
    raise ValueError(f"invalid JSON constant {name}")


def _decode_text(record: Dict[str, Any]) -> Frame:
    content = record.get("content")
    if not isinstance(content, str):
        return IgnoredFrame(reason="text record without string content")

    message_id = record.get("id")
    if not isinstance(message_id, str) or not message_id:
        message_id = new_message_id()

    timestamp = _coerce_timestamp(record.get("timestamp"))
    return TextFrame(content=content, id=message_id, timestamp=timestamp)


def _decode_file_meta(record: Dict[str, Any]) -> Frame:
    try:
        info = FileInfo.from_dict(record.get("payload"))
    except ValueError as e:
        return IgnoredFrame(reason=f"invalid file-meta payload: {e}")
    return FileMetaFrame(info=info)


def _coerce_timestamp(value: Optional[Any]) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return now_ms()
    return int(value)
