import pytest

from shakesync.configure import (
    MASK,
    ConfigError,
    Configuration,
    load_config,
    parse_config,
)

SAMPLE = """
# sample configuration
conf.version = 1
id = redis-shake
log.level = info
parallel = 32
source.address = 127.0.0.1:6379
source.password_raw = password
source.tls_enable = true
target.password_raw = password
filter.db.whitelist = 0;1; 5
filter.key.blacklist =
filter.lua = false
big_key_threshold = 524288000
"""


def test_parse_scalar_values():
    config = parse_config(SAMPLE)
    assert config.conf_version == 1
    assert config.id == "redis-shake"
    assert config.parallel == 32
    assert config.source_address == "127.0.0.1:6379"
    assert config.source_tls_enable is True
    assert config.filter_lua is False
    assert config.big_key_threshold == 524288000


def test_parse_lists():
    config = parse_config(SAMPLE)
    assert config.filter_db_whitelist == ["0", "1", "5"]
    assert config.filter_key_blacklist == []


def test_defaults_are_zero_values():
    config = parse_config("")
    assert config.parallel == 0
    assert config.source_address == ""
    assert config.filter_slot == []
    assert config.metric is False
    assert config.target_db_map == {}


def test_empty_numeric_keeps_default():
    config = parse_config("parallel =\nqps = 10")
    assert config.parallel == 0
    assert config.qps == 10


def test_unknown_key_rejected():
    with pytest.raises(ConfigError):
        parse_config("no.such.option = 1")


def test_missing_equals_rejected():
    with pytest.raises(ConfigError):
        parse_config("parallel 32")


def test_bad_integer_rejected():
    with pytest.raises(ConfigError):
        parse_config("parallel = many")


def test_negative_unsigned_rejected():
    with pytest.raises(ConfigError):
        parse_config("sender.count = -1")


def test_bad_bool_rejected():
    with pytest.raises(ConfigError):
        parse_config("metric = maybe")


def test_safe_copy_masks_passwords_without_mutation():
    config = parse_config(SAMPLE)
    safe = config.safe_copy()
    assert safe.source_password_raw == MASK == "***"
    assert safe.target_password_raw == MASK
    assert safe.source_password_encoding == MASK
    assert safe.target_password_encoding == MASK
    assert config.source_password_raw == "password"
    assert safe.source_address == config.source_address


def test_safe_copy_lists_are_independent():
    config = Configuration(filter_db_whitelist=["0"])
    safe = config.safe_copy()
    safe.filter_db_whitelist.append("1")
    assert config.filter_db_whitelist == ["0"]


def test_load_config_from_file(tmp_path):
    path = tmp_path / "shake.conf"
    path.write_text(SAMPLE, encoding="utf-8")
    assert load_config(path) == parse_config(SAMPLE)


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.conf")