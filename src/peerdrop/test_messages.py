#!/usr/bin/env python3
"""Message log and blob handle tests"""

from peerdrop.messages import (
    BlobHandle,
    FileInfo,
    FileMessage,
    MessageLog,
    Sender,
    TextMessage,
)


def _text(content, sender=Sender.LOCAL, **kwargs):
    return TextMessage(content=content, sender=sender, **kwargs)


class TestMessageLog:
    """Append-only log"""

    def test_insertion_order(self):
        log = MessageLog()
        log.append(_text("first"))
        log.append(_text("second", Sender.REMOTE))
        log.append(_text("third"))

        assert [m.content for m in log] == ["first", "second", "third"]
        assert len(log) == 3
        assert log.last().content == "third"
        assert log[1].sender is Sender.REMOTE

    def test_duplicate_id_is_replaced(self):
        log = MessageLog()
        a = log.append(_text("a", Sender.REMOTE, id="same"))
        b = log.append(_text("b", Sender.REMOTE, id="same"))

        assert a.id == "same"
        assert b.id != "same"
        assert len({m.id for m in log}) == 2

    def test_empty_id_is_replaced(self):
        log = MessageLog()
        message = log.append(_text("a", id=""))
        assert message.id

    def test_texts_and_files(self):
        log = MessageLog()
        log.append(_text("hello"))
        log.append(FileMessage(
            file_info=FileInfo(name="a.bin", size=2),
            payload=BlobHandle(b"ab"),
            sender=Sender.REMOTE
        ))

        assert [m.type for m in log] == ["text", "file"]
        assert len(log.texts()) == 1
        assert log.files()[0].payload.size == 2

    def test_subscribe_and_unsubscribe(self):
        log = MessageLog()
        seen = []
        unsubscribe = log.subscribe(seen.append)

        log.append(_text("one"))
        unsubscribe()
        log.append(_text("two"))

        assert [m.content for m in seen] == ["one"]

    def test_failing_listener_does_not_block_append(self):
        log = MessageLog()

        def broken(message):
            raise RuntimeError("boom")

        log.subscribe(broken)
        log.append(_text("still logged"))
        assert len(log) == 1

    def test_clear(self):
        log = MessageLog()
        log.append(_text("x", id="fixed"))
        log.clear()

        assert len(log) == 0
        assert log.last() is None
        # Ids may be reused after a clear
        assert log.append(_text("y", id="fixed")).id == "fixed"


class TestFileInfo:

    def test_round_trip_dict(self):
        info = FileInfo(name="photo.png", size=1024, mime_type="image/png")
        assert FileInfo.from_dict(info.to_dict()) == info

    def test_null_type_becomes_empty(self):
        assert FileInfo.from_dict({"name": "a", "size": 1, "type": None}).mime_type == ""


class TestBlobHandle:
    """Saving received payloads"""

    def test_save(self, tmp_path):
        path = BlobHandle(b"hello").save(tmp_path, "greeting.txt")

        assert path == tmp_path / "greeting.txt"
        assert path.read_bytes() == b"hello"

    def test_save_never_overwrites(self, tmp_path):
        first = BlobHandle(b"1").save(tmp_path, "report.pdf")
        second = BlobHandle(b"2").save(tmp_path, "report.pdf")
        third = BlobHandle(b"3").save(tmp_path, "report.pdf")

        assert first.name == "report.pdf"
        assert second.name == "report (1).pdf"
        assert third.name == "report (2).pdf"
        assert first.read_bytes() == b"1"

    def test_save_strips_directories(self, tmp_path):
        unix = BlobHandle(b"x").save(tmp_path, "../../etc/passwd")
        windows = BlobHandle(b"y").save(tmp_path, "..\\..\\boot.ini")

        assert unix.parent == tmp_path
        assert unix.name == "passwd"
        assert windows.parent == tmp_path
        assert windows.name == "boot.ini"

    def test_save_empty_name(self, tmp_path):
        path = BlobHandle(b"").save(tmp_path / "new", "")

        assert path.name == "download"
        assert path.read_bytes() == b""
