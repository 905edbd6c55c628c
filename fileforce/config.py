"""
fileforce/config.py

Settings for the FileForce service and CLI.

Resolution order:
    1. explicit path passed to Settings.load()
    2. FILEFORCE_CONFIG
    3. <home>/config.yaml, where home is FILEFORCE_HOME or ~/.fileforce
    4. built-in defaults

Example config.yaml:

    store_root:   /srv/fileforce/store
    ledger_path:  /srv/fileforce/ledger
    keystore_dir: ~/.fileforce/keystore
    mirrors:
      peer-a: /mnt/peer-a/store
    event_offset: 100
    poll_interval: 1.0
    fail_fast: false
    max_concurrent_handlers: 8
    crypto:
      algorithm: aes-256-ctr
      hash_algorithm: sha256
      info: file-force
      size: 32

Relative paths are resolved against home.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from fileforce.core.exceptions import ConfigError
from fileforce.core.models import CryptoOptions

ENV_HOME   = "FILEFORCE_HOME"
ENV_CONFIG = "FILEFORCE_CONFIG"

CONFIG_FILENAME = "config.yaml"
DEFAULT_HOME    = "~/.fileforce"

_KNOWN_KEYS = {
    "home",
    "store_root",
    "ledger_path",
    "keystore_dir",
    "mirrors",
    "event_offset",
    "poll_interval",
    "fail_fast",
    "max_concurrent_handlers",
    "crypto",
}


def default_home() -> Path:
    return Path(os.environ.get(ENV_HOME, DEFAULT_HOME)).expanduser()


@dataclass
class Settings:
    home:                    Path = field(default_factory=default_home)
    store_root:              Path = Path("store")
    ledger_path:             Path = Path("ledger")
    keystore_dir:            Path = Path("keystore")
    mirrors:                 Dict[str, Path] = field(default_factory=dict)
    event_offset:            int = 100
    poll_interval:           float = 1.0
    fail_fast:               bool = False
    max_concurrent_handlers: Optional[int] = None
    crypto:                  CryptoOptions = field(default_factory=CryptoOptions)

    def __post_init__(self) -> None:
        self.home = Path(self.home).expanduser()
        self.store_root   = self._resolve(self.store_root)
        self.ledger_path  = self._resolve(self.ledger_path)
        self.keystore_dir = self._resolve(self.keystore_dir)
        self.mirrors = {str(peer): self._resolve(root) for peer, root in self.mirrors.items()}

        if isinstance(self.event_offset, bool) or not isinstance(self.event_offset, int) \
                or self.event_offset < 0:
            raise ConfigError("event_offset must be a non-negative integer",
                              {"event_offset": self.event_offset})
        if isinstance(self.poll_interval, bool) or not isinstance(self.poll_interval, (int, float)) \
                or self.poll_interval <= 0:
            raise ConfigError("poll_interval must be a positive number",
                              {"poll_interval": self.poll_interval})
        if not isinstance(self.fail_fast, bool):
            raise ConfigError("fail_fast must be true or false", {"fail_fast": self.fail_fast})
        if self.max_concurrent_handlers is not None and (
            isinstance(self.max_concurrent_handlers, bool)
            or not isinstance(self.max_concurrent_handlers, int)
            or self.max_concurrent_handlers < 1
        ):
            raise ConfigError("max_concurrent_handlers must be a positive integer",
                              {"max_concurrent_handlers": self.max_concurrent_handlers})

    def _resolve(self, value: Any) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.home / path

    # ── Loading ───────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Settings":
        """Build settings from a parsed mapping. Raises ConfigError."""
        data = dict(data or {})

        unknown = sorted(set(data) - _KNOWN_KEYS)
        if unknown:
            raise ConfigError("unknown settings", {"keys": ", ".join(unknown)})

        crypto = data.pop("crypto", None) or {}
        if not isinstance(crypto, Mapping):
            raise ConfigError("crypto must be a mapping")
        try:
            options = CryptoOptions(**crypto)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid crypto options: {exc}") from exc

        mirrors = data.pop("mirrors", None) or {}
        if not isinstance(mirrors, Mapping):
            raise ConfigError("mirrors must map peer ids to store roots")

        try:
            return cls(crypto=options, mirrors=dict(mirrors), **data)
        except TypeError as exc:
            raise ConfigError(f"invalid settings: {exc}") from exc

    @classmethod
    def from_yaml(cls, config_file) -> "Settings":
        """Load settings from a YAML file."""
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as exc:
            raise ConfigError(f"cannot read config: {exc}", {"path": str(config_file)}) from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid YAML: {exc}", {"path": str(config_file)}) from exc

        if data is not None and not isinstance(data, Mapping):
            raise ConfigError("config root must be a mapping", {"path": str(config_file)})
        return cls.from_mapping(data)

    @classmethod
    def load(cls, config_file=None) -> "Settings":
        """Resolve and load settings (see module docstring)."""
        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG)
        if config_file is not None:
            return cls.from_yaml(config_file)

        candidate = default_home() / CONFIG_FILENAME
        if candidate.is_file():
            return cls.from_yaml(candidate)
        return cls()
