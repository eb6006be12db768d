import json

import pytest

from flowmaster.config import Config, ConfigError, parse_duration, parse_urls

SERVER_TEMPLATE = """
master-addr = "127.0.0.1:{port0}"
advertise-addr = "127.0.0.1:{port0}"
[etcd]
name = "{name}"
data-dir = "{data_dir}"
peer-urls = "http://127.0.0.1:{port1}"
initial-cluster = "{name}=http://127.0.0.1:{port1}"
"""


def _server_config_text(name, data_dir, port0=10240, port1=10241):
    return SERVER_TEMPLATE.format(name=name, data_dir=data_dir, port0=port0, port1=port1)


def test_load_server_env_config(tmp_path):
    cfg = Config()
    cfg.load_toml_string(_server_config_text("test-start-grpc-srv", str(tmp_path)))
    cfg.adjust()
    assert cfg.master_addr == "127.0.0.1:10240"
    assert cfg.advertise_addr == "127.0.0.1:10240"
    assert cfg.etcd.name == "test-start-grpc-srv"
    assert cfg.etcd.data_dir == str(tmp_path)
    assert cfg.etcd.peer_urls == "http://127.0.0.1:10241"
    assert cfg.etcd.initial_cluster == "test-start-grpc-srv=http://127.0.0.1:10241"


def test_adjust_defaults():
    cfg = Config()
    cfg.master_addr = "127.0.0.1:8261"
    cfg.adjust()
    assert cfg.advertise_addr == cfg.master_addr
    assert cfg.keepalive_interval_str == "500ms"
    assert cfg.keepalive_ttl_str == "20s"
    assert cfg.rpc_timeout_str == "3s"
    assert cfg.keepalive_interval == parse_duration("500ms")
    assert cfg.keepalive_ttl == parse_duration("20s")
    assert cfg.rpc_timeout == parse_duration("3s")


def test_adjust_invalid_duration():
    cfg = Config()
    cfg.load_toml_string('keepalive-ttl = "abc"')
    with pytest.raises(ConfigError):
        cfg.adjust()


def test_unknown_items_reported():
    cfg = Config()
    with pytest.raises(ConfigError) as info:
        cfg.load_toml_string('foo = "1"\n[etcd]\nbar = "x"\n')
    assert "foo" in str(info.value)
    assert "etcd.bar" in str(info.value)


def test_bad_toml_rejected():
    with pytest.raises(ConfigError):
        Config().load_toml_string("master-addr = ")


def test_wrong_type_rejected():
    with pytest.raises(ConfigError):
        Config().load_toml_string("master-addr = 1")


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigError):
        Config().load_toml_file(str(tmp_path / "absent.toml"))


def test_parse_flags_override_file(tmp_path):
    path = tmp_path / "master.toml"
    path.write_text(
        'master-addr = "127.0.0.1:1"\nlog-level = "debug"\n[etcd]\nname = "from-file"\n'
    )
    cfg = Config()
    cfg.parse(["--config", str(path), "-L", "warn"])
    assert cfg.log_level == "warn"
    assert cfg.master_addr == "127.0.0.1:1"
    assert cfg.etcd.name == "from-file"
    assert cfg.advertise_addr == "127.0.0.1:1"


def test_parse_single_dash_and_equals():
    cfg = Config()
    cfg.parse(["-master-addr=127.0.0.1:9000", "--name", "m1"])
    assert cfg.master_addr == "127.0.0.1:9000"
    assert cfg.advertise_addr == "127.0.0.1:9000"
    assert cfg.etcd.name == "m1"


def test_parse_without_flags_keeps_flag_defaults():
    cfg = Config()
    cfg.parse([])
    assert cfg.log_level == "info"
    assert cfg.log_format == "text"
    assert cfg.etcd.peer_urls == "http://127.0.0.1:8291"


def test_parse_positional_rejected():
    with pytest.raises(ConfigError) as info:
        Config().parse(["extra"])
    assert "extra" in str(info.value)


def test_parse_unknown_flag_rejected():
    with pytest.raises(ConfigError):
        Config().parse(["--no-such-flag"])


def test_print_sample_config_requests_help(capsys):
    with pytest.raises(ConfigError) as info:
        Config().parse(["--print-sample-config"])
    assert info.value.help_requested is True
    assert "empty" in capsys.readouterr().out


@pytest.mark.parametrize(
    "text, seconds",
    [("500ms", 0.5), ("20s", 20.0), ("3s", 3.0), ("0", 0.0), ("1h30m", 5400.0)],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


def test_parse_duration_sign():
    assert parse_duration("-20s") == -parse_duration("20s")
    assert parse_duration("+500ms") == parse_duration("500ms")


@pytest.mark.parametrize("text", ["", "10", "5x", "ms", "1.5", "-"])
def test_parse_duration_invalid(text):
    with pytest.raises(ConfigError):
        parse_duration(text)


def test_parse_urls():
    assert parse_urls("") == []
    urls = parse_urls("127.0.0.1:8261,https://host:1,:8262")
    assert [u.scheme for u in urls] == ["http", "https", "http"]
    assert [u.netloc for u in urls] == ["127.0.0.1:8261", "host:1", "0.0.0.0:8262"]


def test_toml_round_trip(tmp_path):
    cfg = Config()
    cfg.load_toml_string(_server_config_text("round-trip", str(tmp_path)))
    cfg.adjust()
    other = Config()
    other.load_toml_string(cfg.to_toml())
    assert other.to_json() == cfg.to_json()
    assert other.etcd == cfg.etcd


def test_json_layout():
    cfg = Config()
    cfg.etcd.name = "json-node"
    cfg.master_addr = "127.0.0.1:8261"
    cfg.adjust()
    data = json.loads(cfg.to_json())
    assert data["etcd"]["name"] == "json-node"
    assert data["master-addr"] == "127.0.0.1:8261"
    assert data["keepalive-ttl"] == "20s"
    assert "keepalive_ttl" not in data
    assert str(cfg) == cfg.to_json()