"""
tests/test_config.py

Settings resolution.

    Explicit path > FILEFORCE_CONFIG > <home>/config.yaml > defaults
    Relative paths resolve against home
    Unknown keys and invalid values raise ConfigError
"""

from pathlib import Path

import pytest

from fileforce.config import Settings
from fileforce.core.exceptions import ConfigError
from fileforce.core.models import CipherAlgorithm, HashAlgorithm


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("FILEFORCE_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("FILEFORCE_CONFIG", raising=False)
    return tmp_path / "home"


class TestDefaults:

    def test_defaults_under_home(self, home):
        settings = Settings.load()
        assert settings.home == home
        assert settings.store_root == home / "store"
        assert settings.ledger_path == home / "ledger"
        assert settings.keystore_dir == home / "keystore"
        assert settings.mirrors == {}
        assert settings.event_offset == 100
        assert settings.crypto.algorithm is CipherAlgorithm.AES_256_CTR

    def test_home_config_file(self, home):
        home.mkdir()
        (home / "config.yaml").write_text("event_offset: 5\n")
        assert Settings.load().event_offset == 5

    def test_empty_file_gives_defaults(self, home, tmp_path):
        config = tmp_path / "empty.yaml"
        config.write_text("")
        assert Settings.load(config).event_offset == 100


class TestLoading:

    def test_full_file(self, home, tmp_path):
        config = tmp_path / "fileforce.yaml"
        config.write_text(
            "store_root: /srv/store\n"
            "ledger_path: ledger-data\n"
            "mirrors:\n"
            "  peer-a: /mnt/a\n"
            "  peer-b: mirrors/b\n"
            "poll_interval: 0.5\n"
            "fail_fast: true\n"
            "max_concurrent_handlers: 4\n"
            "crypto:\n"
            "  algorithm: chacha20\n"
            "  hash_algorithm: sha512\n"
            "  info: my-app\n"
        )
        settings = Settings.load(config)

        assert settings.store_root == Path("/srv/store")
        assert settings.ledger_path == home / "ledger-data"
        assert settings.mirrors == {"peer-a": Path("/mnt/a"), "peer-b": home / "mirrors" / "b"}
        assert settings.poll_interval == 0.5
        assert settings.fail_fast is True
        assert settings.max_concurrent_handlers == 4
        assert settings.crypto.algorithm is CipherAlgorithm.CHACHA20
        assert settings.crypto.hash_algorithm is HashAlgorithm.SHA512
        assert settings.crypto.info == "my-app"

    def test_env_config(self, home, tmp_path, monkeypatch):
        config = tmp_path / "env.yaml"
        config.write_text("event_offset: 7\n")
        monkeypatch.setenv("FILEFORCE_CONFIG", str(config))
        assert Settings.load().event_offset == 7

    def test_explicit_path_wins(self, home, tmp_path, monkeypatch):
        env_config = tmp_path / "env.yaml"
        env_config.write_text("event_offset: 7\n")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("event_offset: 9\n")
        monkeypatch.setenv("FILEFORCE_CONFIG", str(env_config))
        assert Settings.load(explicit).event_offset == 9


class TestInvalid:

    @pytest.mark.parametrize("text", [
        "colour: blue\n",
        "event_offset: -1\n",
        "event_offset: lots\n",
        "poll_interval: 0\n",
        "fail_fast: maybe\n",
        "max_concurrent_handlers: 0\n",
        "crypto:\n  algorithm: rot13\n",
        "crypto:\n  algorithm: aes-128-ctr\n",
        "crypto:\n  pepper: 1\n",
        "mirrors: [a, b]\n",
        "- just\n- a list\n",
        "key: [unclosed\n",
    ])
    def test_rejected(self, home, tmp_path, text):
        config = tmp_path / "bad.yaml"
        config.write_text(text)
        with pytest.raises(ConfigError):
            Settings.load(config)

    def test_missing_file(self, home, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            Settings.load(tmp_path / "nope.yaml")
        assert "path" in exc_info.value.details
