#!/usr/bin/env python3
"""
Session description parsing and the aiortc-backed transport

The aiortc round trip opens real sockets on localhost and is skipped
unless PEERDROP_AIORTC_TESTS is set.
"""

import asyncio
import json
import os

import pytest

from peerdrop.config import SessionConfig
from peerdrop.errors import NegotiationError
from peerdrop.files import BytesFileSource
from peerdrop.session import ConnectionState, PeerSession
from peerdrop.testing import settle
from peerdrop.transport import SessionDescription, parse_description


class TestParseDescription:

    def test_valid_offer(self):
        blob = json.dumps({"type": "offer", "sdp": "v=0\r\n"})
        description = parse_description(blob, "offer")

        assert description == SessionDescription(type="offer", sdp="v=0\r\n")

    def test_browser_blob_round_trip(self):
        description = SessionDescription(type="answer", sdp="v=0\r\ns=-\r\n")
        assert parse_description(description.to_json(), "answer") == description

    def test_extra_fields_are_tolerated(self):
        blob = json.dumps({"type": "offer", "sdp": "v=0", "toJSON": None})
        assert parse_description(blob, "offer").sdp == "v=0"

    @pytest.mark.parametrize("blob", [
        "",
        "   ",
        "{",
        "[]",
        '{"type": "answer", "sdp": "v=0"}',
        '{"type": "offer", "sdp": ""}',
        '{"type": "offer", "sdp": 5}',
        '{"sdp": "v=0"}',
    ])
    def test_rejected(self, blob):
        with pytest.raises(NegotiationError) as exc_info:
            parse_description(blob, "offer")
        assert exc_info.value.error_code == "NEGOTIATION_ERROR"


@pytest.mark.skipif(not os.getenv("PEERDROP_AIORTC_TESTS"), reason="set PEERDROP_AIORTC_TESTS=1 to run")
class TestAiortcRoundTrip:
    """Two aiortc peers on localhost, no STUN"""

    @pytest.mark.asyncio
    async def test_text_and_file(self):
        config = SessionConfig(ice_servers=[])
        alice = PeerSession(config)
        bob = PeerSession(config)
        try:
            await alice.create_offer()
            await bob.create_answer(alice.offer)
            await alice.set_remote_answer(bob.answer)

            await alice.wait_for_state(ConnectionState.CONNECTED, timeout=20)
            await bob.wait_for_state(ConnectionState.CONNECTED, timeout=20)

            alice.send_text("hello over aiortc")
            data = os.urandom(100000)
            await asyncio.wait_for(alice.send_file(BytesFileSource("random.bin", data)), 20)

            for _ in range(200):
                if bob.messages.files():
                    break
                await asyncio.sleep(0.05)

            assert bob.messages.texts()[0].content == "hello over aiortc"
            assert bob.messages.files()[0].payload.data == data
        finally:
            await alice.reset()
            await bob.reset()
            await settle()
