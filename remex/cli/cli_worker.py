import asyncio
import click
from remex.cas.stores import STORE_KINDS
from remex.config import load_config
from remex.runtime.worker.worker_server import serve

#===========================================================
# 'worker' command
#===========================================================
@click.command(context_settings={'show_default': True})
@click.option("--config", "config_file", required=False, default=None, help="Path to a remex.toml file. By default, uses 'remex.toml' in the current directory if it exists.")
@click.option("--work-path", required=False, default=None, help="Where the worker keeps its leases and its store.")
@click.option("--listen-port", "-p", type=int, required=False, default=None, help="Port of the gRPC execution and cache service.")
@click.option("--rest-port", type=int, required=False, default=None, help="If set, also serves the store as a REST cache on this port.")
@click.option("--rest-prefix", required=False, default=None, help="Path prefix of the REST cache, e.g. '/hazelcast/rest/maps'.")
@click.option("--pid-file", required=False, default=None, help="Writes the process id to this file once the worker is listening.")
@click.option("--slots", type=int, required=False, default=None, help="How many actions can execute at the same time.")
@click.option("--store", type=click.Choice(STORE_KINDS), required=False, default=None, help="Kind of store backend.")
@click.option("--store-path", required=False, default=None, help="Where the store keeps its data. Defaults to '<work-path>/cas-store'.")
@click.option("--keep-work-dirs", is_flag=True, default=False, help="Do not delete the lease directories after an action completed.")
def worker(
        config_file:str|None,
        work_path:str|None,
        listen_port:int|None,
        rest_port:int|None,
        rest_prefix:str|None,
        pid_file:str|None,
        slots:int|None,
        store:str|None,
        store_path:str|None,
        keep_work_dirs:bool|None,
        ):
    """Starts an execution worker with its gRPC cache (and optionally a REST cache) sharing one store."""
    config = load_config(config_file, worker_overrides={
        "work_path": work_path,
        "listen_port": listen_port,
        "rest_port": rest_port,
        "rest_prefix": rest_prefix,
        "slots": slots,
        "store": store,
        "store_path": store_path,
        "keep_work_dirs": keep_work_dirs or None,
        })
    worker_config = config.worker
    print(f"-> Starting Worker on port {worker_config.listen_port} (work path: {worker_config.work_path})")
    asyncio.run(serve(worker_config, pid_file=pid_file))
