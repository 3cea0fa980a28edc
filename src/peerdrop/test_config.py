#!/usr/bin/env python3
"""Configuration tests"""

from pathlib import Path

import pytest

from peerdrop.config import (
    CHUNK_SIZE,
    DEFAULT_CHANNEL_LABEL,
    DEFAULT_ICE_SERVERS,
    SessionConfig,
    load_config,
)
from peerdrop.errors import ConfigError


class TestSessionConfig:

    def test_defaults(self):
        config = SessionConfig()

        assert config.ice_servers == DEFAULT_ICE_SERVERS
        assert config.channel_label == DEFAULT_CHANNEL_LABEL == "sendChannel"
        assert config.chunk_size == CHUNK_SIZE == 16384
        assert config.buffered_amount_low_threshold == 65536
        assert config.download_dir == Path("downloads")

    def test_defaults_are_not_shared(self):
        a = SessionConfig()
        a.ice_servers.append("stun:example.org")
        assert SessionConfig().ice_servers == DEFAULT_ICE_SERVERS

    def test_invalid_chunk_size(self):
        with pytest.raises(ConfigError) as exc_info:
            SessionConfig(chunk_size=0)
        assert exc_info.value.error_code == "CONFIG_ERROR"

    def test_negative_threshold(self):
        with pytest.raises(ConfigError):
            SessionConfig(buffered_amount_low_threshold=-1)


class TestFromEnv:
    """PEERDROP_* variables"""

    def test_empty_environment(self):
        assert SessionConfig.from_env({}) == SessionConfig()

    def test_overrides(self, tmp_path):
        config = SessionConfig.from_env({
            "PEERDROP_ICE_SERVERS": "stun:a.example:3478, stun:b.example:3478",
            "PEERDROP_CHANNEL_LABEL": "files",
            "PEERDROP_CHUNK_SIZE": "8192",
            "PEERDROP_BUFFERED_LOW_THRESHOLD": "0",
            "PEERDROP_DOWNLOAD_DIR": str(tmp_path),
        })

        assert config.ice_servers == ["stun:a.example:3478", "stun:b.example:3478"]
        assert config.channel_label == "files"
        assert config.chunk_size == 8192
        assert config.buffered_amount_low_threshold == 0
        assert config.download_dir == tmp_path

    def test_empty_ice_servers_disables_stun(self):
        assert SessionConfig.from_env({"PEERDROP_ICE_SERVERS": ""}).ice_servers == []

    def test_non_integer(self):
        with pytest.raises(ConfigError) as exc_info:
            SessionConfig.from_env({"PEERDROP_CHUNK_SIZE": "big"})
        assert exc_info.value.details == {"variable": "PEERDROP_CHUNK_SIZE"}

    def test_load_config_reads_dotenv(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("PEERDROP_CHANNEL_LABEL=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        # Registered so teardown removes what load_dotenv sets
        monkeypatch.setenv("PEERDROP_CHANNEL_LABEL", "placeholder")
        monkeypatch.delenv("PEERDROP_CHANNEL_LABEL")

        config = load_config()
        assert config.channel_label == "from-dotenv"
