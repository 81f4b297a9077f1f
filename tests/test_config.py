import pytest
from pydantic import ValidationError
from remex.config import load_config, WorkerConfig, ClientConfig

CONFIG_TOML = """
[worker]
work_path = "/tmp/remex-test"
listen_port = 9090
slots = 2

[client]
spawn_strategy = "remote"
remote_executor = "localhost:9090"
"""

def write_config(tmp_path) -> str:
    path = tmp_path / "remex.toml"
    path.write_text(CONFIG_TOML)
    return str(path)

def test_defaults():
    assert WorkerConfig().listen_port == 8080
    assert WorkerConfig().store == "file"
    assert ClientConfig().spawn_strategy == "local"

def test_load_toml(tmp_path):
    config = load_config(write_config(tmp_path), env_file=str(tmp_path / ".env"))
    assert config.worker.work_path == "/tmp/remex-test"
    assert config.worker.listen_port == 9090
    assert config.worker.slots == 2
    assert config.client.spawn_strategy == "remote"
    assert config.client.remote_executor == "localhost:9090"

def test_env_overrides_toml(tmp_path, monkeypatch):
    monkeypatch.setenv("REMEX_LISTEN_PORT", "7070")
    monkeypatch.setenv("REMEX_REMOTE_CACHE", "cachehost:1234")
    config = load_config(write_config(tmp_path), env_file=str(tmp_path / ".env"))
    assert config.worker.listen_port == 7070
    assert config.client.remote_cache == "cachehost:1234"

def test_dotenv_file(tmp_path, monkeypatch):
    # registering the variable first lets monkeypatch remove what load_dotenv sets
    monkeypatch.setenv("REMEX_SLOTS", "1")
    monkeypatch.delenv("REMEX_SLOTS")
    env_file = tmp_path / ".env"
    env_file.write_text("REMEX_SLOTS=6\n")
    config = load_config(write_config(tmp_path), env_file=str(env_file))
    assert config.worker.slots == 6

def test_overrides_win(tmp_path, monkeypatch):
    monkeypatch.setenv("REMEX_LISTEN_PORT", "7070")
    config = load_config(
        write_config(tmp_path),
        env_file=str(tmp_path / ".env"),
        worker_overrides={"listen_port": 6060, "slots": None},
        client_overrides={"spawn_strategy": "local"})
    assert config.worker.listen_port == 6060
    # None means "not given", the toml value stays
    assert config.worker.slots == 2
    assert config.client.spawn_strategy == "local"

def test_invalid_values(tmp_path):
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path), env_file=str(tmp_path / ".env"), worker_overrides={"slots": 0})
    with pytest.raises(ValidationError):
        load_config(write_config(tmp_path), env_file=str(tmp_path / ".env"), client_overrides={"spawn_strategy": "cloud"})
