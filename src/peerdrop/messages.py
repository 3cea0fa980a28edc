"""
Message log entries and the append-only log the UI observes.

Entries are kept in insertion order, which is the order they were sent
or delivered. The log is never re-sorted and only cleared on reset.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Union

logger = logging.getLogger(__name__)


class Sender(Enum):
    """Who produced a log entry"""
    LOCAL = "me"
    REMOTE = "peer"


def new_message_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Milliseconds since the epoch"""
    return int(time.time() * 1000)


@dataclass
class FileInfo:
    """File metadata announced by a file-meta record"""
    name: str
    size: int
    mime_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: ``{name, size, type}``"""
        return {"name": self.name, "size": self.size, "type": self.mime_type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileInfo":
        """Create from the wire form.

        Raises:
            ValueError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("file info must be an object")
        name = data.get("name")
        size = data.get("size")
        mime_type = data.get("type", "")
        if not isinstance(name, str):
            raise ValueError("file info 'name' must be a string")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError("file info 'size' must be a non-negative integer")
        if mime_type is None:
            mime_type = ""
        if not isinstance(mime_type, str):
            raise ValueError("file info 'type' must be a string")
        return cls(name=name, size=size, mime_type=mime_type)


@dataclass
class BlobHandle:
    """Locally addressable file payload"""
    data: bytes
    mime_type: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    def save(self, directory: Union[str, Path], name: str) -> Path:
        """
        Write the payload into ``directory``.

        Any directory components in ``name`` are dropped and an existing
        file is never overwritten: ``report.pdf`` becomes
        ``report (1).pdf`` and so on.

        Returns:
            Path of the written file
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        safe_name = os.path.basename(name.replace("\\", "/")).strip()
        if safe_name in ("", ".", ".."):
            safe_name = "download"

        stem, suffix = os.path.splitext(safe_name)
        target = directory / safe_name
        counter = 1
        while target.exists():
            target = directory / f"{stem} ({counter}){suffix}"
            counter += 1

        target.write_bytes(self.data)
        logger.debug(f"Saved {self.size} bytes to {target}")
        return target


@dataclass
class TextMessage:
    """Text entry in the message log"""
    content: str
    sender: Sender
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)

    @property
    def type(self) -> str:
        return "text"


@dataclass
class FileMessage:
    """File entry in the message log"""
    file_info: FileInfo
    payload: BlobHandle
    sender: Sender
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)

    @property
    def type(self) -> str:
        return "file"


Message = Union[TextMessage, FileMessage]
MessageListener = Callable[[Message], None]


class MessageLog:
    """
    Append-only, insertion-ordered log of sent and delivered messages.

    Listeners registered with :meth:`subscribe` are called with every
    appended message. Ids are unique for the lifetime of the log: a
    remote message reusing an id already present gets a fresh one.
    """

    def __init__(self):
        self._messages: List[Message] = []
        self._ids: Set[str] = set()
        self._listeners: List[MessageListener] = []

    def append(self, message: Message) -> Message:
        if not message.id or message.id in self._ids:
            fresh = new_message_id()
            logger.debug(f"Replacing duplicate message id {message.id!r} with {fresh}")
            message.id = fresh
        self._ids.add(message.id)
        self._messages.append(message)

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Message listener failed: {e}")
        return message

    def clear(self) -> None:
        self._messages.clear()
        self._ids.clear()

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def texts(self) -> List[TextMessage]:
        return [m for m in self._messages if isinstance(m, TextMessage)]

    def files(self) -> List[FileMessage]:
        return [m for m in self._messages if isinstance(m, FileMessage)]

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
