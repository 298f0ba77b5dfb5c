"""Validation of the run options and filling in of their defaults."""

from __future__ import annotations

import datetime
import logging
import logging.handlers
import os
import re
import socket
import struct
from typing import Any

from shakesync.configure import (
    REDIS_TYPE_CLUSTER,
    TYPE_DECODE,
    TYPE_DUMP,
    TYPE_RESTORE,
    TYPE_RUMP,
    TYPE_SYNC,
    ConfigError,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_ID = "redis-shake-default"
DEFAULT_HTTP_PORT = 9320
DEFAULT_SYSTEM_PORT = 9310
DEFAULT_SENDER_SIZE = 65535
DEFAULT_SENDER_COUNT = 1024
DEFAULT_SENDER_DELAY_CHANNEL_SIZE = 32
DEFAULT_PARALLEL = 64
DEFAULT_QPS = 500000
DEFAULT_SCAN_KEY_NUMBER = 100
DEFAULT_HEARTBEAT_INTERVAL = 10
DEFAULT_HEARTBEAT_IP = "127.0.0.1"
DEFAULT_DUMP_OUTPUT = "output-rdb-dump"
DEFAULT_AUTH_TYPE = "auth"

ALIYUN_CLUSTER = "aliyun_cluster"
TENCENT_CLUSTER = "tencent_cluster"
UCLOUD_CLUSTER = "ucloud_cluster"

LOG_LEVEL_NONE = "none"
LOG_LEVEL_ERROR = "error"
LOG_LEVEL_WARN = "warn"
LOG_LEVEL_INFO = "info"
LOG_LEVEL_DEBUG = "debug"

_LOG_LEVELS = {
    LOG_LEVEL_NONE: logging.CRITICAL + 10,
    LOG_LEVEL_ERROR: logging.ERROR,
    LOG_LEVEL_WARN: logging.WARNING,
    "": logging.INFO,
    LOG_LEVEL_INFO: logging.INFO,
    LOG_LEVEL_DEBUG: logging.DEBUG,
}

_KNOWN_TYPES = (TYPE_DECODE, TYPE_RESTORE, TYPE_DUMP, TYPE_SYNC, TYPE_RUMP)
_KEY_EXISTS_CHOICES = ("none", "rewrite", "ignore")
_REPLACE_VERSION_PREFIXES = ("4.", "3.", "5.")
_FAKE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_ATOI = re.compile(r"[+-]?[0-9]+")
_DURATION_PART = re.compile(r"([0-9]*(?:\.[0-9]*)?)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": datetime.timedelta(microseconds=0.001),
    "us": datetime.timedelta(microseconds=1),
    "µs": datetime.timedelta(microseconds=1),
    "μs": datetime.timedelta(microseconds=1),
    "ms": datetime.timedelta(milliseconds=1),
    "s": datetime.timedelta(seconds=1),
    "m": datetime.timedelta(minutes=1),
    "h": datetime.timedelta(hours=1),
}


def _atoi(text: str) -> int:
    if not _ATOI.fullmatch(text):
        raise ValueError(f'parsing "{text}": invalid syntax')
    return int(text, 10)


def parse_go_duration(text: str) -> datetime.timedelta:
    """Parse a duration such as ``-1h30m`` or ``+2.5s``; raise ValueError if invalid."""
    rest = text
    negative = False
    if rest[:1] in ("-", "+"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return datetime.timedelta()
    if not rest:
        raise ValueError(f'invalid duration "{text}"')

    total = datetime.timedelta()
    position = 0
    while position < len(rest):
        match = _DURATION_PART.match(rest, position)
        if match is None:
            raise ValueError(f'invalid duration "{text}"')
        number, unit = match.groups()
        if number in ("", "."):
            raise ValueError(f'invalid duration "{text}"')
        total += _DURATION_UNITS[unit] * float(number)
        position = match.end()
    return -total if negative else total


def parse_fake_time(value: str, now: datetime.datetime) -> datetime.timedelta:
    """Return the shift from ``now`` that ``value`` asks for.

    ``value`` is a signed duration, ``@`` followed by epoch milliseconds,
    or a ``YYYY-mm-dd HH:MM:SS`` time in UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    try:
        if value[:1] in ("-", "+"):
            return parse_go_duration(value.lower())
        if value[:1] == "@":
            millis = _atoi(value[1:])
            epoch = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
            return epoch + datetime.timedelta(milliseconds=millis) - now
        moment = datetime.datetime.strptime(value, _FAKE_TIME_FORMAT)
        return moment.replace(tzinfo=datetime.timezone.utc) - now
    except ValueError as exc:
        raise ConfigError(f"parse fake_time failed[{exc}]") from exc


def parse_target_db_map(text: str) -> dict[int, int]:
    """Parse ``src-dst;src-dst`` pairs into a mapping of database numbers."""
    result: dict[int, int] = {}
    for pair in text.strip().split(";"):
        parts = pair.split("-")
        if len(parts) != 2:
            raise ConfigError(f"parse target.dbmap[{text}] failed")
        try:
            source_db, target_db = _atoi(parts[0]), _atoi(parts[1])
        except ValueError as exc:
            raise ConfigError(f"parse target.dbmap[{text}] failed[{exc}]") from exc
        result[source_db] = target_db
    return result


def _interface_ip(name: str) -> str:
    try:
        import fcntl
    except ImportError:
        raise ConfigError("get ip failed[interface lookup unsupported]") from None
    siocgifaddr = 0x8915
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            packed = fcntl.ioctl(
                sock.fileno(), siocgifaddr, struct.pack("256s", name[:15].encode())
            )
        except OSError as exc:
            raise ConfigError(f"get ip failed[{exc}]") from exc
    return socket.inet_ntoa(packed[20:24])


def _version_less(version: str, other: str) -> bool:
    def numbers(text: str) -> list[int] | None:
        parts = text.split(".")[:2]
        if len(parts) < 2 or not all(part.isdigit() for part in parts):
            return None
        return [int(part) for part in parts]

    left, right = numbers(version), numbers(other)
    if left is None or right is None:
        return False
    return left < right


def _setup_logging(options: Any) -> None:
    package_logger = logging.getLogger("shakesync")
    if options.log_file:
        handler = logging.handlers.RotatingFileHandler(
            options.log_file, maxBytes=100 * MB, backupCount=10
        )
        package_logger.addHandler(handler)
    level = _LOG_LEVELS.get(options.log_level)
    if level is None:
        raise ConfigError(f"invalid log level[{options.log_level}]")
    package_logger.setLevel(level)


def _check_exclusive(first: list[str], second: list[str], what: str) -> None:
    if first and second:
        raise ConfigError(
            f"only one of 'filter.{what}.whitelist' and 'filter.{what}.blacklist' can be given"
        )


def sanitize_options(options: Any, tp: str) -> Any:
    """Check ``options`` for run type ``tp`` and fill in defaults in place.

    Raises ConfigError on the first invalid setting; returns ``options``.
    """
    if tp not in _KNOWN_TYPES:
        raise ConfigError(f"unknown type[{tp}]")

    if not options.id:
        options.id = DEFAULT_ID

    if options.ncpu < 0 or options.ncpu > 1024:
        raise ConfigError(f"invalid ncpu[{options.ncpu}]")

    if options.parallel == 0:
        options.parallel = DEFAULT_PARALLEL
    elif options.parallel > 1024:
        raise ConfigError(f"parallel[{options.parallel}] should in (0, 1024]")
    else:
        options.parallel = max(options.parallel, options.ncpu)

    if options.big_key_threshold > 500 * MB:
        raise ConfigError(f"BigKeyThreshold[{options.big_key_threshold}] should <= 500 MB")
    if options.big_key_threshold == 0:
        options.big_key_threshold = 50 * MB

    for side in ("source", "target"):
        raw = getattr(options, f"{side}_password_raw")
        encoding = getattr(options, f"{side}_password_encoding")
        if raw and encoding:
            raise ConfigError(
                f"only one of {side} password_raw or password_encoding should be given"
            )
        if encoding:
            setattr(options, f"{side}_password_raw", "")

    if tp in (TYPE_RESTORE, TYPE_DECODE):
        if not options.source_rdb_input:
            raise ConfigError("input rdb shouldn't be empty when type in {restore, decode}")
        for rdb in options.source_rdb_input:
            if not os.path.exists(rdb):
                raise ConfigError(f"input rdb file[{rdb}] not exists")
    if tp == TYPE_DUMP and not options.target_rdb_output:
        options.target_rdb_output = DEFAULT_DUMP_OUTPUT

    if tp in (TYPE_DUMP, TYPE_SYNC):
        limit = len(options.source_address_list)
    elif tp in (TYPE_RESTORE, TYPE_DECODE):
        limit = len(options.source_rdb_input)
    else:
        limit = None
    if limit is not None and not 0 < options.source_rdb_parallel <= limit:
        options.source_rdb_parallel = limit

    if options.source_rdb_special_cloud not in ("", UCLOUD_CLUSTER):
        raise ConfigError(
            f"rdb special cloud type[{options.source_rdb_special_cloud}] is not supported"
        )

    _setup_logging(options)

    for side in ("source", "target"):
        auth_type = getattr(options, f"{side}_auth_type")
        if not auth_type:
            setattr(options, f"{side}_auth_type", DEFAULT_AUTH_TYPE)
        else:
            logger.warning("%s.auth_type[%s] != %s", side, auth_type, DEFAULT_AUTH_TYPE)

    if options.heartbeat_interval > 86400:
        raise ConfigError(
            f"HeartbeatInterval[{options.heartbeat_interval}] should in [0, 86400]"
        )
    if options.heartbeat_interval == 0:
        options.heartbeat_interval = DEFAULT_HEARTBEAT_INTERVAL

    if not options.heartbeat_network_interface:
        options.heartbeat_ip = DEFAULT_HEARTBEAT_IP
    else:
        options.heartbeat_ip = _interface_ip(options.heartbeat_network_interface)

    if options.fake_time:
        options.shift_time = parse_fake_time(
            options.fake_time, datetime.datetime.now(datetime.timezone.utc)
        )

    if options.rewrite:
        options.key_exists = "rewrite"
    if not options.key_exists:
        options.key_exists = "none"
    elif options.key_exists == "ignore" and tp == TYPE_RUMP:
        options.key_exists = "none"
    if options.key_exists not in _KEY_EXISTS_CHOICES:
        raise ConfigError("key_exists should in {none, rewrite, ignore}")

    if options.filter_db:
        options.filter_db_whitelist = [options.filter_db]
    _check_exclusive(options.filter_db_whitelist, options.filter_db_blacklist, "db")
    if options.filter_key:
        options.filter_key_whitelist = list(options.filter_key)
    _check_exclusive(options.filter_key_whitelist, options.filter_key_blacklist, "key")
    _check_exclusive(
        options.filter_command_whitelist, options.filter_command_blacklist, "command"
    )

    for index, value in enumerate(options.filter_slot):
        try:
            _atoi(value)
        except ValueError as exc:
            raise ConfigError(f"parse FilterSlot with index[{index}] failed[{exc}]") from exc

    if not options.target_db_string:
        options.target_db = -1
    else:
        try:
            value = _atoi(options.target_db_string)
        except ValueError as exc:
            raise ConfigError(
                f"parse target.db[{options.target_db_string}] failed[{exc}]"
            ) from exc
        options.target_db = -1 if value < 0 else value

    if options.target_db == -1 and options.target_db_map_string:
        options.target_db_map = parse_target_db_map(options.target_db_map_string)

    if options.target_type == REDIS_TYPE_CLUSTER:
        if options.target_db == -1:
            options.filter_db_whitelist = ["0"]
            options.filter_db_blacklist = []
            logger.info("the target redis type is cluster, only pass db0")
        elif options.target_db == 0:
            logger.info("the target redis type is cluster, all db syncing to db0")
        else:
            raise ConfigError(
                f"target.db[{options.target_db}] should in {{-1, 0}} when target type is cluster"
            )
        if any(target != 0 for target in options.target_db_map.values()):
            raise ConfigError("when target type is cluster, all db should map to db0")

    if options.http_profile < -1 or options.http_profile > 65535:
        raise ConfigError(f"HttpProfile[{options.http_profile}] should in [0, 65535]")
    if options.http_profile == 0:
        options.http_profile = DEFAULT_HTTP_PORT
    elif options.http_profile == -1:
        logger.info("http_profile is disable")

    if options.system_profile < 0 or options.system_profile > 65535:
        raise ConfigError(f"SystemProfile[{options.system_profile}] should in [0, 65535]")
    if options.system_profile == 0:
        options.system_profile = DEFAULT_SYSTEM_PORT

    if options.sender_size < 0 or options.sender_size >= 1073741824:
        raise ConfigError(f"SenderSize[{options.sender_size}] should in [0, 1073741824]")
    if options.sender_size == 0:
        options.sender_size = DEFAULT_SENDER_SIZE

    if options.sender_count < 0 or options.sender_count >= 100000:
        raise ConfigError(f"SenderCount[{options.sender_count}] should in [0, 100000]")
    if options.sender_count == 0:
        options.sender_count = DEFAULT_SENDER_COUNT

    if options.sender_delay_channel_size == 0:
        options.sender_delay_channel_size = DEFAULT_SENDER_DELAY_CHANNEL_SIZE

    if options.qps < 0 or options.qps >= 100000000:
        raise ConfigError(f"qps[{options.qps}] should in (0, 100000000]")
    if options.qps == 0:
        options.qps = DEFAULT_QPS

    if tp in (TYPE_RESTORE, TYPE_SYNC, TYPE_RUMP):
        if options.target_version:
            options.big_key_threshold = 1
            logger.warning(
                "target version[%s] given [%s], set big_key_threshold = 1",
                options.target_version,
                options.source_version,
            )
        options.target_replace = options.target_version.startswith(_REPLACE_VERSION_PREFIXES)

    if tp == TYPE_SYNC:
        if not _version_less(options.source_version, "2.8"):
            options.psync = True
        else:
            options.resume_from_break_point = False

    if tp == TYPE_RUMP:
        if options.scan_key_number == 0:
            options.scan_key_number = DEFAULT_SCAN_KEY_NUMBER
        if options.scan_special_cloud not in ("", TENCENT_CLUSTER, ALIYUN_CLUSTER):
            raise ConfigError(
                f"special cloud type[{options.scan_special_cloud}] is not supported"
            )
        if options.scan_special_cloud and options.scan_key_file:
            raise ConfigError(
                f"scan.special_cloud[{options.scan_special_cloud}] and "
                f"scan.key_file[{options.scan_key_file}] can't all be given at the same time"
            )

    if options.resume_from_break_point:
        if tp != TYPE_SYNC:
            options.resume_from_break_point = False
        if not options.psync:
            raise ConfigError("'psync' should == true if enable resume_from_break_point")
        if options.target_db != -1:
            raise ConfigError("target.db should only == -1 if enable resume_from_break_point")
        if options.target_db_map:
            raise ConfigError(
                "target.dbmap should only empty if enable resume_from_break_point"
            )
        if options.source_type != options.target_type:
            raise ConfigError(
                "source type must equal to the target type when "
                "'resume_from_break_point == true': "
                f"source.type[{options.source_type}] != target.type[{options.target_type}]"
            )
        if options.source_type == REDIS_TYPE_CLUSTER and len(
            options.source_address_list
        ) != len(options.target_address_list):
            raise ConfigError(
                "source db node number must equal to the target db node when "
                "'resume_from_break_point == true': "
                f"source[{len(options.source_address_list)}] != "
                f"target[{len(options.target_address_list)}]"
            )

    return options