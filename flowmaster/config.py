"""Configuration of the server master: flags, TOML file and defaults."""

from __future__ import annotations

import argparse
import base64
import binascii
import json
import logging
import re
import sys
import tomllib
from dataclasses import dataclass, field
from typing import Any, Sequence
from urllib.parse import SplitResult, urlsplit

import tomli_w

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_TTL = "20s"
DEFAULT_KEEPALIVE_INTERVAL = "500ms"
DEFAULT_RPC_TIMEOUT = "3s"
DEFAULT_PEER_URLS = "http://127.0.0.1:8291"

# Base64-encoded sample configuration shown by --print-sample-config.
SAMPLE_CONFIG_FILE = ""


class ConfigError(ValueError):
    """Raised for invalid flags, config files or config values."""

    def __init__(self, message: str, *, help_requested: bool = False) -> None:
        super().__init__(message)
        self.help_requested = help_requested


@dataclass
class EtcdParams:
    """Settings of the embedded metadata store member."""

    name: str = ""
    data_dir: str = ""
    initial_cluster: str = ""
    peer_urls: str = DEFAULT_PEER_URLS
    advertise_peer_urls: str = ""


_ETCD_KEYS = {
    "name": "name",
    "data-dir": "data_dir",
    "initial-cluster": "initial_cluster",
    "peer-urls": "peer_urls",
    "advertise-peer-urls": "advertise_peer_urls",
}

_CONFIG_KEYS = {
    "log-level": "log_level",
    "log-file": "log_file",
    "log-format": "log_format",
    "log-rotate": "log_rotate",
    "master-addr": "master_addr",
    "advertise-addr": "advertise_addr",
    "config-file": "config_file",
    "keepalive-ttl": "keepalive_ttl_str",
    "keepalive-interval": "keepalive_interval_str",
    "rpc-timeout": "rpc_timeout_str",
}

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h30m" or "500ms" into seconds."""
    rest = text
    sign = 1.0
    if rest[:1] in ("+", "-"):
        sign = -1.0 if rest[0] == "-" else 1.0
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ConfigError(f"invalid duration {text!r}")
    total = 0.0
    pos = 0
    while pos < len(rest):
        match = _DURATION_PART.match(rest, pos)
        if match is None:
            raise ConfigError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def parse_urls(text: str) -> list[SplitResult]:
    """Split a comma-separated address list into URLs.

    Items without a scheme get "http"; a missing host becomes "0.0.0.0".
    """
    if text == "":
        return []
    urls = []
    for item in text.split(","):
        if not (item.startswith("http://") or item.startswith("https://")):
            item = "http://" + item
        try:
            url = urlsplit(item)
        except ValueError as exc:
            raise ConfigError(f"parse url {item!r} failed: {exc}") from exc
        if url.netloc.startswith(":"):
            url = url._replace(netloc="0.0.0.0" + url.netloc)
        urls.append(url)
    return urls


class _FlagParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        raise ConfigError(f"parse flag set: {message}")


def _build_parser() -> _FlagParser:
    parser = _FlagParser(
        prog="flowmaster-master",
        add_help=False,
        allow_abbrev=False,
        argument_default=argparse.SUPPRESS,
    )

    def flag(name: str, dest: str, help_text: str) -> None:
        parser.add_argument(f"-{name}", f"--{name}", dest=dest, help=help_text)

    parser.add_argument(
        "-V", "--V", dest="print_version", action="store_true",
        help="prints version and exit",
    )
    parser.add_argument(
        "-print-sample-config", "--print-sample-config",
        dest="print_sample_config", action="store_true",
        help="print sample config file",
    )
    flag("config", "config_file", "path to config file")
    flag("master-addr", "master_addr", "master API server and status addr")
    flag("advertise-addr", "advertise_addr", "advertise address for client traffic")
    flag("L", "log_level", "log level: debug, info, warn, error, fatal")
    flag("log-file", "log_file", "log file path")
    flag("log-format", "log_format", 'the format of the log, "text" or "json"')
    flag("name", "etcd_name", "human-readable name for this member")
    flag("initial-cluster", "etcd_initial_cluster",
         "initial cluster configuration for bootstrapping")
    flag("peer-urls", "etcd_peer_urls", "URLs for peer traffic")
    flag("advertise-peer-urls", "etcd_advertise_peer_urls",
         "advertise URLs for peer traffic")
    parser.add_argument("rest", nargs="*", default=[])
    return parser


@dataclass
class Config:
    """Configuration of a server master; durations are in seconds."""

    log_level: str = "info"
    log_file: str = ""
    log_format: str = "text"
    log_rotate: str = ""
    master_addr: str = ""
    advertise_addr: str = ""
    config_file: str = ""
    etcd: EtcdParams = field(default_factory=EtcdParams)
    keepalive_ttl_str: str = ""
    keepalive_interval_str: str = ""
    rpc_timeout_str: str = ""
    keepalive_ttl: float = 0.0
    keepalive_interval: float = 0.0
    rpc_timeout: float = 0.0
    print_version: bool = False
    print_sample_config: bool = False

    def __str__(self) -> str:
        return self.to_json()

    def parse(self, arguments: Sequence[str] | None = None) -> None:
        """Apply command-line flags over the config file, then adjust defaults."""
        args = list(sys.argv[1:] if arguments is None else arguments)
        namespace = _build_parser().parse_args(args)
        self._apply_flags(namespace)

        if self.print_sample_config:
            _print_sample_config()
            raise ConfigError("help requested", help_requested=True)

        if self.config_file:
            self.load_toml_file(self.config_file)

        # Flags given on the command line win over the config file.
        self._apply_flags(namespace)

        if namespace.rest:
            raise ConfigError(f"'{namespace.rest[0]}' is an invalid flag")
        self.adjust()

    def _apply_flags(self, namespace: argparse.Namespace) -> None:
        for dest, value in vars(namespace).items():
            if dest == "rest":
                continue
            if dest.startswith("etcd_"):
                setattr(self.etcd, dest.removeprefix("etcd_"), value)
            else:
                setattr(self, dest, value)

    def load_toml_string(self, data: str) -> None:
        """Load settings from TOML text; unknown keys are an error."""
        try:
            mapping = tomllib.loads(data)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"decode config file failed: {exc}") from exc
        self._load_mapping(mapping)

    def load_toml_file(self, path: str) -> None:
        """Load settings from a TOML file; unknown keys are an error."""
        try:
            with open(path, "rb") as handle:
                mapping = tomllib.load(handle)
        except OSError as exc:
            raise ConfigError(f"decode config file failed: {exc}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"decode config file failed: {exc}") from exc
        self._load_mapping(mapping)

    def _load_mapping(self, mapping: dict[str, Any]) -> None:
        unknown: list[str] = []
        for key, value in mapping.items():
            if key == "etcd":
                if not isinstance(value, dict):
                    raise ConfigError("decode config file failed: etcd must be a table")
                for etcd_key, etcd_value in value.items():
                    attr = _ETCD_KEYS.get(etcd_key)
                    if attr is None:
                        unknown.append(f"etcd.{etcd_key}")
                    else:
                        _set_string(self.etcd, attr, etcd_value, f"etcd.{etcd_key}")
                continue
            attr = _CONFIG_KEYS.get(key)
            if attr is None:
                unknown.append(key)
            else:
                _set_string(self, attr, value, key)
        if unknown:
            raise ConfigError(f"unknown config items: {','.join(unknown)}")

    def adjust(self) -> None:
        """Fill in defaults and parse the duration settings."""
        if self.advertise_addr == "":
            self.advertise_addr = self.master_addr
        if self.keepalive_interval_str == "":
            self.keepalive_interval_str = DEFAULT_KEEPALIVE_INTERVAL
        self.keepalive_interval = parse_duration(self.keepalive_interval_str)
        if self.keepalive_ttl_str == "":
            self.keepalive_ttl_str = DEFAULT_KEEPALIVE_TTL
        self.keepalive_ttl = parse_duration(self.keepalive_ttl_str)
        if self.rpc_timeout_str == "":
            self.rpc_timeout_str = DEFAULT_RPC_TIMEOUT
        self.rpc_timeout = parse_duration(self.rpc_timeout_str)

    def _as_mapping(self) -> dict[str, Any]:
        mapping: dict[str, Any] = {
            key: getattr(self, attr)
            for key, attr in _CONFIG_KEYS.items()
            if not key.startswith(("keepalive", "rpc"))
        }
        mapping["etcd"] = {key: getattr(self.etcd, attr) for key, attr in _ETCD_KEYS.items()}
        mapping["keepalive-ttl"] = self.keepalive_ttl_str
        mapping["keepalive-interval"] = self.keepalive_interval_str
        mapping["rpc-timeout"] = self.rpc_timeout_str
        return mapping

    def to_json(self) -> str:
        """JSON representation of the file-backed settings."""
        return json.dumps(self._as_mapping())

    def to_toml(self) -> str:
        """TOML representation of the file-backed settings."""
        return tomli_w.dumps(self._as_mapping())


def _set_string(target: object, attr: str, value: Any, key: str) -> None:
    if not isinstance(value, str):
        raise ConfigError(
            f"decode config file failed: {key} must be a string, got {type(value).__name__}"
        )
    setattr(target, attr, value)


def _print_sample_config() -> None:
    if SAMPLE_CONFIG_FILE.strip() == "":
        print("sample config file is empty")
        return
    try:
        raw = base64.b64decode(SAMPLE_CONFIG_FILE, validate=True)
    except (binascii.Error, ValueError) as exc:
        print("base64 decode config error:", exc)
        return
    print(raw.decode("utf-8", errors="replace"))