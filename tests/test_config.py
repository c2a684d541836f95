import yaml

from octo.config import ConfigManager
from octo.ringbuffer import DEFAULT_CAPACITY


def write_config(tmp_path, data):
    (tmp_path / "config.yaml").write_text(data if isinstance(data, str) else yaml.safe_dump(data))
    return ConfigManager(config_dir=tmp_path)


def test_defaults_without_file(tmp_path):
    cfg = ConfigManager(config_dir=tmp_path / "missing")
    assert cfg.get_engine_host() is None
    assert cfg.get_buffer_capacity() == DEFAULT_CAPACITY
    assert cfg.get_initial_tail() == 500
    assert cfg.get_log_level() == "INFO"
    assert cfg.get_export_dir().parts[-2:] == (".octo", "logs")
    assert not (tmp_path / "missing").exists()


def test_user_values_override_defaults(tmp_path):
    cfg = write_config(tmp_path, {
        'engine': {'host': 'unix:///run/user/1000/docker.sock'},
        'logs': {'buffer_capacity': 200, 'initial_tail': 50, 'export_dir': str(tmp_path / 'exports')},
        'logging': {'level': 'debug', 'max_size_mb': 2},
        'unknown_section': {'x': 1},
    })
    assert cfg.get_engine_host() == 'unix:///run/user/1000/docker.sock'
    assert cfg.get_buffer_capacity() == 200
    assert cfg.get_initial_tail() == 50
    assert cfg.get_export_dir() == tmp_path / 'exports'
    assert cfg.get_log_level() == "DEBUG"
    assert cfg.get_log_max_bytes() == 2 * 1024 * 1024
    assert cfg.get_log_backup_count() == 5


def test_invalid_capacity_falls_back(tmp_path):
    cfg = write_config(tmp_path, {'logs': {'buffer_capacity': 0}})
    assert cfg.get_buffer_capacity() == DEFAULT_CAPACITY


def test_values_of_wrong_type_keep_defaults(tmp_path):
    cfg = write_config(tmp_path, {
        'engine': {'host': ['not', 'a', 'host'], 'request_timeout': '30'},
        'logs': {'buffer_capacity': 'lots', 'initial_tail': None},
    })
    assert cfg.get_engine_host() is None
    assert cfg.get_request_timeout() == 30
    assert cfg.get_buffer_capacity() == DEFAULT_CAPACITY
    assert cfg.get_initial_tail() == 500


def test_malformed_file_uses_defaults(tmp_path):
    cfg = write_config(tmp_path, "logs: [unclosed")
    assert cfg.get_initial_tail() == 500

    cfg = write_config(tmp_path, "- just\n- a list\n")
    assert cfg.get_buffer_capacity() == DEFAULT_CAPACITY


def test_save_round_trip(tmp_path):
    cfg = ConfigManager(config_dir=tmp_path / "octo")
    cfg.get_config().logs.initial_tail = 42
    cfg.save_config()

    reloaded = ConfigManager(config_dir=tmp_path / "octo")
    assert reloaded.get_initial_tail() == 42
