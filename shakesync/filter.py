"""Key, database, slot and command filters applied while copying data."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

CHECKPOINT_KEY = "redis-shake-checkpoint"

_INNER_FILTER_KEYS = frozenset({CHECKPOINT_KEY})
_LUA_COMMANDS = ("eval", "script", "evalsha")


@dataclass(frozen=True)
class RedisCommand:
    """Where the keys sit in a command's arguments (1-based, Redis style)."""

    first_key: int
    last_key: int
    key_step: int


REDIS_COMMANDS: dict[str, RedisCommand] = {
    name: RedisCommand(*spec)
    for name, spec in {
        "set": (1, 1, 1),
        "setnx": (1, 1, 1),
        "setex": (1, 1, 1),
        "psetex": (1, 1, 1),
        "append": (1, 1, 1),
        "del": (1, 0, 1),
        "unlink": (1, -1, 1),
        "setbit": (1, 1, 1),
        "bitfield": (1, 1, 1),
        "setrange": (1, 1, 1),
        "incr": (1, 1, 1),
        "decr": (1, 1, 1),
        "rpush": (1, 1, 1),
        "lpush": (1, 1, 1),
        "rpushx": (1, 1, 1),
        "lpushx": (1, 1, 1),
        "linsert": (1, 1, 1),
        "rpop": (1, 1, 1),
        "lpop": (1, 1, 1),
        "brpop": (1, -2, 1),
        "brpoplpush": (1, 2, 1),
        "blpop": (1, -2, 1),
        "lset": (1, 1, 1),
        "ltrim": (1, 1, 1),
        "lrem": (1, 1, 1),
        "rpoplpush": (1, 2, 1),
        "sadd": (1, 1, 1),
        "srem": (1, 1, 1),
        "smove": (1, 2, 1),
        "spop": (1, 1, 1),
        "sinterstore": (1, -1, 1),
        "sunionstore": (1, -1, 1),
        "sdiffstore": (1, -1, 1),
        "zadd": (1, 1, 1),
        "zincrby": (1, 1, 1),
        "zrem": (1, 1, 1),
        "zremrangebyscore": (1, 1, 1),
        "zremrangebyrank": (1, 1, 1),
        "zremrangebylex": (1, 1, 1),
        "hset": (1, 1, 1),
        "hsetnx": (1, 1, 1),
        "hmset": (1, 1, 1),
        "hincrby": (1, 1, 1),
        "hincrbyfloat": (1, 1, 1),
        "hdel": (1, 1, 1),
        "incrby": (1, 1, 1),
        "decrby": (1, 1, 1),
        "incrbyfloat": (1, 1, 1),
        "getset": (1, 1, 1),
        "mset": (1, -1, 2),
        "msetnx": (1, -1, 2),
        "move": (1, 1, 1),
        "rename": (1, 2, 1),
        "renamenx": (1, 2, 1),
        "expire": (1, 1, 1),
        "expireat": (1, 1, 1),
        "pexpire": (1, 1, 1),
        "pexpireat": (1, 1, 1),
        "persist": (1, 1, 1),
        "restore": (1, 1, 1),
        "restore-asking": (1, 1, 1),
        "bitop": (2, -1, 1),
        "geoadd": (1, 1, 1),
        "pfadd": (1, 1, 1),
        "pfmerge": (1, -1, 1),
    }.items()
}


def _as_text(key: str | bytes) -> str:
    if isinstance(key, bytes):
        return key.decode("utf-8", "surrogateescape")
    return key


def has_at_least_one_prefix(key: str, prefixes: Iterable[str]) -> bool:
    """Return True if ``key`` starts with any of ``prefixes``."""
    return any(key.startswith(prefix) for prefix in prefixes)


def filter_commands(cmd: str, options: Any) -> bool:
    """Return True if the command must not be passed on."""
    lowered = cmd.lower()
    if lowered == "opinfo":
        return True
    if options.filter_command_whitelist:
        return cmd not in options.filter_command_whitelist
    if options.filter_command_blacklist and cmd in options.filter_command_blacklist:
        return True
    return bool(options.filter_lua and lowered in _LUA_COMMANDS)


def filter_key(key: str | bytes, options: Any) -> bool:
    """Return True if the key must not be passed on."""
    text = _as_text(key)
    if text in _INNER_FILTER_KEYS or text.startswith(CHECKPOINT_KEY):
        return True
    if options.filter_key_blacklist:
        return has_at_least_one_prefix(text, options.filter_key_blacklist)
    if options.filter_key_whitelist:
        return not has_at_least_one_prefix(text, options.filter_key_whitelist)
    return False


def _to_int_or_zero(text: str) -> int:
    try:
        return int(text, 10)
    except ValueError:
        return 0


def filter_slot(slot: int, options: Any) -> bool:
    """Return True if the slot is not among the configured slots."""
    if not options.filter_slot:
        return False
    return all(slot != _to_int_or_zero(entry) for entry in options.filter_slot)


def filter_db(db: int, options: Any) -> bool:
    """Return True if the logical database must not be passed on."""
    name = str(db)
    if options.filter_db_blacklist:
        return name in options.filter_db_blacklist
    if options.filter_db_whitelist:
        return name not in options.filter_db_whitelist
    return False


def get_match_keys(
    command: RedisCommand, args: Sequence[bytes], options: Any
) -> tuple[list[bytes], bool]:
    """Drop filtered keys (with their step of values) from ``args``.

    Returns the new argument list and whether at least one key passed.
    """
    step = command.key_step
    last = command.last_key - 1
    if last < 0:
        last += len(args)

    passed = [
        position
        for position in range(command.first_key - 1, last + 1, step)
        if not filter_key(args[position], options)
    ]
    new_args = [args[position + offset] for position in passed for offset in range(step)]
    new_args.extend(args[last + step:])
    return new_args, bool(passed)


def handle_filter_key_with_command(
    cmd: str, argv: Sequence[bytes], options: Any
) -> tuple[list[bytes], bool]:
    """Filter the keys of one command.

    Returns the possibly reduced argument list and True when the whole
    command is to be rejected.
    """
    if not options.filter_key_whitelist and not options.filter_key_blacklist:
        return list(argv), False
    command = REDIS_COMMANDS.get(cmd)
    if command is None or not argv:
        return list(argv), False
    new_args, passed = get_match_keys(command, argv, options)
    return new_args, not passed