import io
from types import SimpleNamespace

import pytest

from shakesync.sanitize import ALIYUN_CLUSTER, TENCENT_CLUSTER
from shakesync.scanner import (
    KeyFileScanner,
    NormalScanner,
    SpecialCloudScanner,
    new_scanner,
)


class FakeClient:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []
        self.closed = False

    def do(self, cmd, *args):
        self.calls.append((cmd, *args))
        return self.replies.pop(0)

    def close(self):
        self.closed = True


def _options(**kwargs):
    base = {"scan_key_number": 2, "scan_special_cloud": "", "scan_key_file": ""}
    base.update(kwargs)
    return SimpleNamespace(**base)


def test_key_file_scanner_exact_multiple_needs_extra_scan():
    scanner = KeyFileScanner(io.StringIO("a\nb"), 2)
    assert list(scanner) == [["a", "b"], []]


def test_key_file_scanner_close_closes_stream():
    stream = io.StringIO("a\n")
    with KeyFileScanner(stream, 5) as scanner:
        assert scanner.scan_key() == ["a"]
    assert stream.closed


def test_key_file_scanner_rejects_zero_key_number():
    with pytest.raises(ValueError):
        KeyFileScanner(io.StringIO(""), 0)


def test_normal_scanner_follows_cursor():
    client = FakeClient([[b"7", [b"x", b"y"]], [b"0", [b"z"]]])
    scanner = NormalScanner(client, 2)
    assert list(scanner) == [["x", "y"], ["z"]]
    assert client.calls == [("SCAN", 0, "COUNT", 2), ("SCAN", 7, "COUNT", 2)]
    assert scanner.end_node() is True


def test_normal_scanner_nil_reply_keeps_cursor():
    scanner = NormalScanner(FakeClient([None]), 3)
    assert scanner.scan_key() == []
    assert scanner.cursor == 0


def test_normal_scanner_malformed_reply():
    scanner = NormalScanner(FakeClient([[b"notanumber", []]]), 3)
    with pytest.raises(ValueError):
        scanner.scan_key()


def test_normal_scanner_close():
    client = FakeClient([])
    NormalScanner(client, 1).close()
    assert client.closed is True


def test_tencent_scanner_sends_node_id():
    client = FakeClient([[b"0", [b"k"]]])
    scanner = SpecialCloudScanner(client, 4, TENCENT_CLUSTER, tencent_node_id="node-a")
    assert scanner.scan_key() == ["k"]
    assert client.calls == [("SCAN", 0, "COUNT", 4, "node-a")]


def test_aliyun_scanner_uses_iscan():
    client = FakeClient([[b"5", []], [b"0", [b"q"]]])
    scanner = SpecialCloudScanner(client, 4, ALIYUN_CLUSTER, aliyun_node_id=3)
    assert scanner.scan_key() == []
    assert scanner.end_node() is False
    assert scanner.scan_key() == ["q"]
    assert client.calls == [("ISCAN", 3, 0, "COUNT", 4), ("ISCAN", 3, 5, "COUNT", 4)]


def test_special_cloud_scanner_rejects_unknown_cloud():
    with pytest.raises(ValueError):
        SpecialCloudScanner(FakeClient([]), 4, "other_cloud")


def test_new_scanner_choice(tmp_path):
    client = FakeClient([])
    normal = new_scanner(client, _options())
    assert isinstance(normal, NormalScanner)
    special = new_scanner(client, _options(scan_special_cloud=TENCENT_CLUSTER), "n1", 0)
    assert isinstance(special, SpecialCloudScanner)
    assert special.tencent_node_id == "n1"

    key_file = tmp_path / "keys.txt"
    key_file.write_text("first\nsecond\nthird\n", encoding="utf-8")
    with new_scanner(client, _options(scan_key_file=str(key_file))) as from_file:
        assert list(from_file) == [["first", "second"], ["third"]]


def test_new_scanner_missing_key_file(tmp_path):
    with pytest.raises(OSError):
        new_scanner(FakeClient([]), _options(scan_key_file=str(tmp_path / "missing")))