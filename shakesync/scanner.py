"""Key scanners: walk the keys of one source node in batches."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterator, Sequence
from typing import Any, Protocol, TextIO

from shakesync.sanitize import ALIYUN_CLUSTER, TENCENT_CLUSTER

logger = logging.getLogger(__name__)


class RedisClient(Protocol):
    """A connection able to run one command and return its reply."""

    def do(self, cmd: str, *args: Any) -> Any: ...

    def close(self) -> None: ...


def _check_key_number(key_number: int) -> int:
    if key_number < 1:
        raise ValueError(f"key number[{key_number}] should be > 0")
    return key_number


def _to_key(item: Any) -> str:
    if isinstance(item, (bytes, bytearray)):
        return bytes(item).decode("utf-8", "surrogateescape")
    if isinstance(item, str):
        return item
    raise ValueError(f"unexpected key {item!r}")


class Scanner(abc.ABC):
    """Returns the keys of a node batch by batch."""

    @abc.abstractmethod
    def scan_key(self) -> list[str]:
        """Return the next batch of keys."""

    @abc.abstractmethod
    def end_node(self) -> bool:
        """True once the last batch of the node has been returned."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying connection or file."""

    def __iter__(self) -> Iterator[list[str]]:
        while True:
            yield self.scan_key()
            if self.end_node():
                break

    def __enter__(self) -> Scanner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class KeyFileScanner(Scanner):
    """Reads keys from a text stream, one key per line."""

    def __init__(self, stream: TextIO, key_number: int) -> None:
        self.stream = stream
        self.key_number = _check_key_number(key_number)
        self._count = -1
        self._exhausted = False

    def _read_line(self) -> str | None:
        if self._exhausted:
            return None
        line = self.stream.readline()
        if not line:
            self._exhausted = True
            return None
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        return line

    def scan_key(self) -> list[str]:
        keys: list[str] = []
        while len(keys) < self.key_number:
            line = self._read_line()
            if line is None:
                break
            keys.append(line)
        self._count = len(keys)
        return keys

    def end_node(self) -> bool:
        return self._count != self.key_number

    def close(self) -> None:
        self.stream.close()


class _CursorScanner(Scanner):
    """Shared cursor handling of the SCAN-style scanners."""

    _name = "Scanner"

    def __init__(self, client: RedisClient, key_number: int) -> None:
        self.client = client
        self.key_number = _check_key_number(key_number)
        self.cursor = 0

    def _apply_reply(self, reply: Any) -> list[str]:
        if reply is None:
            return []
        if not isinstance(reply, Sequence) or isinstance(reply, (str, bytes, bytearray)):
            raise ValueError(
                f"{self._name}: scan with cursor[{self.cursor}] failed[unexpected reply {reply!r}]"
            )
        try:
            cursor = int(reply[0]) if len(reply) > 0 else self.cursor
            raw_keys = reply[1] if len(reply) > 1 else None
            keys = [] if raw_keys is None else [_to_key(item) for item in raw_keys]
        except (TypeError, ValueError) as exc:
            raise ValueError(
                f"{self._name}: do scan with cursor[{self.cursor}] failed[{exc}]"
            ) from exc
        self.cursor = cursor
        return keys


class NormalScanner(_CursorScanner):
    """Walks a node with the plain SCAN command."""

    _name = "NormalScanner"

    def scan_key(self) -> list[str]:
        reply = self.client.do("SCAN", self.cursor, "COUNT", self.key_number)
        return self._apply_reply(reply)

    def end_node(self) -> bool:
        return self.cursor == 0

    def close(self) -> None:
        self.client.close()


class SpecialCloudScanner(_CursorScanner):
    """Walks one node behind a cloud proxy with its own scan variant."""

    _name = "SpecialCloudScanner"

    def __init__(
        self,
        client: RedisClient,
        key_number: int,
        special_cloud: str,
        tencent_node_id: str = "",
        aliyun_node_id: int = 0,
    ) -> None:
        if special_cloud not in (TENCENT_CLUSTER, ALIYUN_CLUSTER):
            raise ValueError(f"special cloud type[{special_cloud}] is not supported")
        super().__init__(client, key_number)
        self.special_cloud = special_cloud
        self.tencent_node_id = tencent_node_id
        self.aliyun_node_id = aliyun_node_id

    def scan_key(self) -> list[str]:
        if self.special_cloud == TENCENT_CLUSTER:
            reply = self.client.do(
                "SCAN", self.cursor, "COUNT", self.key_number, self.tencent_node_id
            )
        else:
            reply = self.client.do(
                "ISCAN", self.aliyun_node_id, self.cursor, "COUNT", self.key_number
            )
        return self._apply_reply(reply)

    def end_node(self) -> bool:
        return self.cursor == 0

    def close(self) -> None:
        self.client.close()


def new_scanner(
    client: RedisClient,
    options: Any,
    tencent_node_id: str = "",
    aliyun_node_id: int = 0,
) -> Scanner:
    """Pick the scanner the options ask for.

    Raises OSError if the key file cannot be opened.
    """
    key_number = options.scan_key_number
    if options.scan_special_cloud:
        return SpecialCloudScanner(
            client, key_number, options.scan_special_cloud, tencent_node_id, aliyun_node_id
        )
    if options.scan_key_file:
        try:
            stream = open(
                options.scan_key_file, encoding="utf-8", errors="surrogateescape", newline=""
            )
        except OSError as exc:
            logger.error("open scan-key-file[%s] error[%s]", options.scan_key_file, exc)
            raise
        return KeyFileScanner(stream, key_number)
    return NormalScanner(client, key_number)