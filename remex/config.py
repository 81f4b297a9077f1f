import os
from typing import Literal
import tomlkit
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Configuration of workers and build clients.
#
# Values are layered, later layers win:
#   1) defaults of the models below
#   2) a toml file (default: 'remex.toml' in the current directory), read with tomlkit
#   3) environment variables 'REMEX_<FIELD>' (a '.env' file is loaded with python-dotenv)
#   4) explicit overrides, usually command line flags
#
# The expected toml format is:
# --------------------------
# [worker]
# work_path = "/tmp/remex"
# listen_port = 8080
# rest_port = 8081
#
# [client]
# spawn_strategy = "remote"
# remote_executor = "localhost:8080"
# remote_rest_cache = "http://localhost:8081/hazelcast/rest/maps"
# --------------------------

DEFAULT_CONFIG_FILE = "remex.toml"
ENV_PREFIX = "REMEX_"

class WorkerConfig(BaseModel):
    work_path:str = "remex-work"
    listen_port:int = 8080
    rest_port:int|None = None
    rest_prefix:str|None = None
    slots:int = Field(default=4, ge=1)
    keep_work_dirs:bool = False
    store:Literal["file", "lmdb", "memory"] = "file"
    store_path:str|None = None

class ClientConfig(BaseModel):
    spawn_strategy:Literal["local", "remote"] = "local"
    remote_executor:str|None = None
    remote_cache:str|None = None
    remote_rest_cache:str|None = None
    timeout_seconds:float = Field(default=10.0, gt=0)
    execute_timeout_seconds:float = Field(default=15*60, gt=0)

class RemexConfig(BaseModel):
    worker:WorkerConfig = Field(default_factory=WorkerConfig)
    client:ClientConfig = Field(default_factory=ClientConfig)


def load_config(
        toml_file_path:str|None=None,
        env_file:str|None=None,
        worker_overrides:dict|None=None,
        client_overrides:dict|None=None,
        ) -> RemexConfig:
    values = {"worker": {}, "client": {}}
    if toml_file_path is None and os.path.exists(DEFAULT_CONFIG_FILE):
        toml_file_path = DEFAULT_CONFIG_FILE
    if toml_file_path is not None:
        doc = _read_toml_file(toml_file_path)
        for section in values:
            values[section].update(doc.get(section, {}))

    load_dotenv(env_file)
    values["worker"].update(_from_env(WorkerConfig))
    values["client"].update(_from_env(ClientConfig))

    values["worker"].update(_not_none(worker_overrides))
    values["client"].update(_not_none(client_overrides))
    return RemexConfig.model_validate(values)

def _read_toml_file(file_path:str) -> dict:
    with open(file_path, 'r') as f:
        return tomlkit.load(f).unwrap()

def _from_env(model:type[BaseModel]) -> dict:
    values = {}
    for field_name in model.model_fields:
        value = os.getenv(ENV_PREFIX + field_name.upper())
        if value is not None:
            values[field_name] = value
    return values

def _not_none(values:dict|None) -> dict:
    if values is None:
        return {}
    return {k: v for k, v in values.items() if v is not None}
