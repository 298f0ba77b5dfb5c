"""Run-time configuration: the option set, its file format and safe display."""

from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

REDIS_TYPE_STANDALONE = "standalone"
REDIS_TYPE_SENTINEL = "sentinel"
REDIS_TYPE_CLUSTER = "cluster"
REDIS_TYPE_PROXY = "proxy"

STANDALONE_ROLE_MASTER = "master"
STANDALONE_ROLE_SLAVE = "slave"
STANDALONE_ROLE_ALL = "all"

TYPE_DECODE = "decode"
TYPE_RESTORE = "restore"
TYPE_DUMP = "dump"
TYPE_SYNC = "sync"
TYPE_RUMP = "rump"

MASK = "***"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_SOURCE_PREFIX = "source"
_TARGET_PREFIX = "target"
_RAW_SUFFIX = "password_raw"
_ENCODING_SUFFIX = "password_encoding"


class ConfigError(ValueError):
    """Raised when a configuration text cannot be parsed."""


def _opt(key: str, kind: str, default: Any = None) -> Any:
    metadata = {"config": key, "kind": kind}
    if kind == "list":
        return field(default_factory=list, metadata=metadata)
    if default is None:
        default = {"str": "", "int": 0, "uint": 0, "bool": False}[kind]
    return field(default=default, metadata=metadata)


def _credential_opt(prefix: str, suffix: str) -> Any:
    return _opt(f"{prefix}.{suffix}", "str")


@dataclass
class Configuration:
    """All options read from the configuration file plus derived values."""

    conf_version: int = _opt("conf.version", "uint")

    id: str = _opt("id", "str")
    log_file: str = _opt("log.file", "str")
    log_level: str = _opt("log.level", "str")
    system_profile: int = _opt("system_profile", "int")
    http_profile: int = _opt("http_profile", "int")
    parallel: int = _opt("parallel", "int")
    source_type: str = _opt("source.type", "str")
    source_address: str = _opt("source.address", "str")
    source_password_raw: str = _credential_opt(_SOURCE_PREFIX, _RAW_SUFFIX)
    source_password_encoding: str = _credential_opt(_SOURCE_PREFIX, _ENCODING_SUFFIX)
    source_auth_type: str = _opt("source.auth_type", "str")
    source_tls_enable: bool = _opt("source.tls_enable", "bool")
    source_tls_skip_verify: bool = _opt("source.tls_skip_verify", "bool")
    source_rdb_input: list[str] = _opt("source.rdb.input", "list")
    source_rdb_parallel: int = _opt("source.rdb.parallel", "int")
    source_rdb_special_cloud: str = _opt("source.rdb.special_cloud", "str")
    source_version: str = _opt("source.version", "str")
    target_address: str = _opt("target.address", "str")
    target_password_raw: str = _credential_opt(_TARGET_PREFIX, _RAW_SUFFIX)
    target_password_encoding: str = _credential_opt(_TARGET_PREFIX, _ENCODING_SUFFIX)
    target_db_string: str = _opt("target.db", "str")
    target_db_map_string: str = _opt("target.dbmap", "str")
    target_auth_type: str = _opt("target.auth_type", "str")
    target_type: str = _opt("target.type", "str")
    target_tls_enable: bool = _opt("target.tls_enable", "bool")
    target_tls_skip_verify: bool = _opt("target.tls_skip_verify", "bool")
    target_rdb_output: str = _opt("target.rdb.output", "str")
    target_version: str = _opt("target.version", "str")
    fake_time: str = _opt("fake_time", "str")
    key_exists: str = _opt("key_exists", "str")
    filter_db_whitelist: list[str] = _opt("filter.db.whitelist", "list")
    filter_db_blacklist: list[str] = _opt("filter.db.blacklist", "list")
    filter_key_whitelist: list[str] = _opt("filter.key.whitelist", "list")
    filter_key_blacklist: list[str] = _opt("filter.key.blacklist", "list")
    filter_slot: list[str] = _opt("filter.slot", "list")
    filter_command_whitelist: list[str] = _opt("filter.command.whitelist", "list")
    filter_command_blacklist: list[str] = _opt("filter.command.blacklist", "list")
    filter_lua: bool = _opt("filter.lua", "bool")
    big_key_threshold: int = _opt("big_key_threshold", "uint")
    metric: bool = _opt("metric", "bool")
    metric_print_log: bool = _opt("metric.print_log", "bool")
    sender_size: int = _opt("sender.size", "uint")
    sender_count: int = _opt("sender.count", "uint")
    sender_delay_channel_size: int = _opt("sender.delay_channel_size", "uint")
    keep_alive: int = _opt("keep_alive", "uint")
    pid_path: str = _opt("pid_path", "str")
    scan_key_number: int = _opt("scan.key_number", "uint")
    scan_special_cloud: str = _opt("scan.special_cloud", "str")
    scan_key_file: str = _opt("scan.key_file", "str")
    qps: int = _opt("qps", "int")
    resume_from_break_point: bool = _opt("resume_from_break_point", "bool")

    # inner variables
    psync: bool = _opt("psync", "bool")
    ncpu: int = _opt("ncpu", "int")
    heartbeat_url: str = _opt("heartbeat.url", "str")
    heartbeat_interval: int = _opt("heartbeat.interval", "uint")
    heartbeat_external: str = _opt("heartbeat.external", "str")
    heartbeat_network_interface: str = _opt("heartbeat.network_interface", "str")
    replace_hash_tag: bool = _opt("replace_hash_tag", "bool")
    extra_info: bool = _opt("extra", "bool")
    sock_file_name: str = _opt("sock.file_name", "str")
    sock_file_size: int = _opt("sock.file_size", "uint")
    filter_key: list[str] = _opt("filter.key", "list")
    filter_db: str = _opt("filter.db", "str")
    rewrite: bool = _opt("rewrite", "bool")

    # generated variables
    source_address_list: list[str] = field(default_factory=list)
    target_address_list: list[str] = field(default_factory=list)
    heartbeat_ip: str = ""
    shift_time: datetime.timedelta = field(default_factory=datetime.timedelta)
    target_replace: bool = False
    target_db: int = 0
    version: str = ""
    type: str = ""
    target_db_map: dict[int, int] = field(default_factory=dict)

    def safe_copy(self) -> Configuration:
        """Return a deep copy with every password masked."""
        polished = copy.deepcopy(self)
        polished.source_password_raw = MASK
        polished.source_password_encoding = MASK
        polished.target_password_raw = MASK
        polished.target_password_encoding = MASK
        return polished


_FIELDS_BY_KEY = {
    f.metadata["config"]: f for f in fields(Configuration) if "config" in f.metadata
}


def _convert(kind: str, raw: str, key: str) -> Any:
    if kind == "str":
        return raw
    if kind == "list":
        return [part.strip() for part in raw.split(";") if part.strip()]
    if kind == "bool":
        if raw in _TRUE_WORDS:
            return True
        if raw in _FALSE_WORDS:
            return False
        raise ConfigError(f"invalid boolean for {key}: {raw!r}")
    try:
        value = int(raw, 10)
    except ValueError as exc:
        raise ConfigError(f"invalid integer for {key}: {raw!r}") from exc
    if kind == "uint" and value < 0:
        raise ConfigError(f"negative value for unsigned option {key}: {raw!r}")
    return value


def parse_config(text: str) -> Configuration:
    """Parse ``key = value`` lines into a Configuration.

    Blank lines and lines starting with ``#`` are ignored; list options
    take values separated by ``;``.
    """
    config = Configuration()
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, raw = stripped.partition("=")
        if not sep:
            raise ConfigError(f"line {lineno}: missing '=' in {stripped!r}")
        key = key.strip()
        raw = raw.strip()
        option = _FIELDS_BY_KEY.get(key)
        if option is None:
            raise ConfigError(f"line {lineno}: unknown option {key!r}")
        kind = option.metadata["kind"]
        if not raw and kind not in ("str", "list"):
            continue
        setattr(config, option.name, _convert(kind, raw, key))
    return config


def load_config(path: str | Path) -> Configuration:
    """Read and parse a configuration file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"configure file open failed: {exc}") from exc
    return parse_config(text)