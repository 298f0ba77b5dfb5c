"""Periodic heartbeat posted to a monitoring server."""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

PostFunc = Callable[[str, bytes, float], bytes]


@dataclass
class HeartbeatData:
    """What a heartbeat reports about this process."""

    id: str = ""
    ip: str = ""
    port: int = 0
    ts: int = 0
    version: str = ""
    external: str = ""

    def to_json(self) -> bytes:
        """Serialise as indented JSON."""
        return json.dumps(asdict(self), indent=2, ensure_ascii=False).encode("utf-8")


@dataclass(frozen=True)
class HeartbeatResponse:
    """The server's answer; a non-zero ``error`` means failure."""

    error: int = 0
    message: str = ""
    data: str = ""


def parse_heartbeat_response(body: bytes | str) -> HeartbeatResponse:
    """Parse a server answer; raise ValueError if it is not a valid response."""
    try:
        decoded = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid heartbeat response: {exc}") from exc
    if decoded is None:
        return HeartbeatResponse()
    if not isinstance(decoded, dict):
        raise ValueError("heartbeat response is not an object")

    error = decoded.get("error", 0)
    if error is None:
        error = 0
    if isinstance(error, bool) or not isinstance(error, int):
        raise ValueError(f"invalid error field: {error!r}")
    if not -(2**31) <= error < 2**31:
        raise ValueError(f"error field out of range: {error}")

    texts = {}
    for name in ("msg", "data"):
        value = decoded.get(name, "")
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"invalid {name} field: {value!r}")
        texts[name] = value
    return HeartbeatResponse(error=error, message=texts["msg"], data=texts["data"])


def _http_post(url: str, body: bytes, timeout: float) -> bytes:
    request = urllib.request.Request(
        url, data=body, method="POST", headers={"Content-Type": "application/json"}
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.read()
    except urllib.error.HTTPError as exc:
        with exc:
            return exc.read()


class HeartbeatController:
    """Posts the heartbeat data to ``server_url`` every ``interval`` seconds."""

    def __init__(
        self,
        server_url: str,
        interval: float,
        data: HeartbeatData | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        post: PostFunc | None = None,
    ) -> None:
        self.server_url = server_url
        self.interval = interval
        self.data = data if data is not None else HeartbeatData()
        self.timeout = timeout
        self._post = post if post is not None else _http_post

    @classmethod
    def from_options(cls, options: Any, version: str, **kwargs: Any) -> HeartbeatController:
        """Build a controller from the run options."""
        data = HeartbeatData(
            id=options.id,
            ip=options.heartbeat_ip,
            port=int(options.http_profile),
            version=version,
            external=options.heartbeat_external,
        )
        return cls(options.heartbeat_url, options.heartbeat_interval, data, **kwargs)

    def start(self, stop_event: threading.Event) -> None:
        """Send heartbeats until ``stop_event`` is set."""
        if self.interval <= 0:
            raise ValueError(f"heartbeat interval[{self.interval}] should be > 0")
        while not stop_event.wait(self.interval):
            self.run_once(self.data)

    def run_once(self, data: HeartbeatData) -> bool:
        """Post one heartbeat; return True if the server accepted it."""
        data.ts = time.time_ns() // 1_000_000
        body = data.to_json()
        try:
            reply = self._post(self.server_url, body, self.timeout)
        except OSError as exc:
            logger.warning(
                "Event:SendHearbeatFail\tId:%s\tURL:%s\tError:%s",
                data.id,
                self.server_url,
                exc,
            )
            return False

        try:
            response = parse_heartbeat_response(reply)
        except ValueError as exc:
            logger.warning(
                "Event:SendHearbeatFail\tId:%s\tURL:%s\tReason:InvalidResponseBody\t"
                "Response:%r\tError:%s\t",
                data.id,
                self.server_url,
                reply,
                exc,
            )
            return False

        if response.error != 0:
            logger.warning(
                "Event:SendHearbeatFail\tId:%s\tURL:%s\tReason:ErrorResponse\tResponse:%r\t",
                data.id,
                self.server_url,
                reply,
            )
            return False
        logger.info("Event: SendHearbeatDone\tId:%s\t", data.id)
        return True