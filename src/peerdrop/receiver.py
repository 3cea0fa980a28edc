"""
File reassembly on the receiving side.

At most one transfer is in flight. A ``file-meta`` starts it (replacing any
unfinished one), binary chunks are appended in arrival order, and
``file-end`` turns the chunks into a :class:`FileMessage` from the peer.
Chunks and end markers with no transfer in flight are dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .codec import ChunkFrame, FileEndFrame, FileMetaFrame, Frame, FrameType
from .messages import BlobHandle, FileInfo, FileMessage, Sender

logger = logging.getLogger(__name__)


@dataclass
class FileTransferState:
    """Receiver-side state of the file in flight"""
    info: FileInfo
    chunks: List[bytes] = field(default_factory=list)

    @property
    def bytes_received(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def get_progress(self) -> float:
        """Transfer progress (0.0 - 1.0)"""
        if self.info.size == 0:
            return 1.0
        return min(self.bytes_received / self.info.size, 1.0)

    def assemble(self) -> BlobHandle:
        return BlobHandle(data=b"".join(self.chunks), mime_type=self.info.mime_type)


class FileReceiver:
    """Assembles files from meta / chunk / end frames"""

    def __init__(self, on_file: Optional[Callable[[FileMessage], None]] = None):
        self.on_file = on_file
        self.transfer: Optional[FileTransferState] = None
        self.discarded_chunks = 0

    @property
    def active(self) -> bool:
        return self.transfer is not None

    def handle(self, frame: Frame) -> Optional[FileMessage]:
        """Dispatch a file frame; other frame kinds are ignored"""
        if frame.type is FrameType.FILE_META:
            self.begin(frame)
        elif frame.type is FrameType.CHUNK:
            self.add_chunk(frame)
        elif frame.type is FrameType.FILE_END:
            return self.finish(frame)
        return None

    def begin(self, frame: FileMetaFrame) -> FileTransferState:
        if self.transfer is not None:
            # Last meta wins; the unfinished file is dropped without a partial result
            logger.warning(
                f"Discarding unfinished transfer of {self.transfer.info.name!r} "
                f"({self.transfer.bytes_received}/{self.transfer.info.size} bytes)"
            )
        self.transfer = FileTransferState(info=frame.info)
        logger.info(f"Receiving {frame.info.name!r} ({frame.info.size} bytes)")
        return self.transfer

    def add_chunk(self, frame: ChunkFrame) -> bool:
        if self.transfer is None:
            self.discarded_chunks += 1
            logger.debug(f"Dropping {len(frame.data)} byte chunk with no transfer in flight")
            return False
        self.transfer.chunks.append(frame.data)
        return True

    def finish(self, frame: Optional[FileEndFrame] = None) -> Optional[FileMessage]:
        if self.transfer is None:
            return None

        transfer = self.transfer
        self.transfer = None
        payload = transfer.assemble()
        if payload.size != transfer.info.size:
            logger.warning(
                f"{transfer.info.name!r}: announced {transfer.info.size} bytes, received {payload.size}"
            )

        message = FileMessage(file_info=transfer.info, payload=payload, sender=Sender.REMOTE)
        logger.info(f"Received {transfer.info.name!r} in {len(transfer.chunks)} chunks")
        if self.on_file is not None:
            self.on_file(message)
        return message

    def clear(self) -> None:
        """Drop any partial transfer"""
        if self.transfer is not None:
            logger.info(f"Dropping partial transfer of {self.transfer.info.name!r}")
        self.transfer = None
