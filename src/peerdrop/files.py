"""File sources handed to :meth:`PeerSession.send_file`."""

import asyncio
import mimetypes
from pathlib import Path
from typing import Union

from .messages import FileInfo


class FileSource:
    """Something with a name, a size, a MIME type and readable bytes"""

    name: str
    size: int
    mime_type: str

    @property
    def info(self) -> FileInfo:
        return FileInfo(name=self.name, size=self.size, mime_type=self.mime_type)

    async def read_all(self) -> bytes:
        raise NotImplementedError


class PathFileSource(FileSource):
    """File on the local filesystem"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        if not self.path.is_file():
            raise FileNotFoundError(f"Not a file: {self.path}")
        self.name = self.path.name
        self.size = self.path.stat().st_size
        # Unknown types are reported as "" like a browser File.type
        self.mime_type = mimetypes.guess_type(self.name)[0] or ""

    async def read_all(self) -> bytes:
        return await asyncio.to_thread(self.path.read_bytes)

    def __repr__(self) -> str:
        return f"PathFileSource({str(self.path)!r})"


class BytesFileSource(FileSource):
    """In-memory buffer"""

    def __init__(self, name: str, data: bytes, mime_type: str = ""):
        self.name = name
        self.data = bytes(data)
        self.size = len(self.data)
        self.mime_type = mime_type

    async def read_all(self) -> bytes:
        return self.data

    def __repr__(self) -> str:
        return f"BytesFileSource({self.name!r}, {self.size} bytes)"
