import asyncio
import os
import sys
import click
from remex.cas import *
from remex.config import load_config
from remex.runtime.client.action_inputs import ActionSpec
from remex.runtime.client.build_session import BuildSession

#===========================================================
# 'run' command
#===========================================================
@click.command(context_settings={'show_default': True})
@click.option("--config", "config_file", required=False, default=None, help="Path to a remex.toml file.")
@click.option("--exec-root", "-C", required=False, default=None, help="Directory that all input and output paths are relative to. By default, the current directory.")
@click.option("--input", "-i", "inputs", multiple=True, help="Input file or directory (relative to the exec root). Can be repeated.")
@click.option("--output", "-o", "outputs", multiple=True, help="Output file or directory the action produces. Can be repeated.")
@click.option("--env", "env_vars", multiple=True, help="Environment variable of the action as KEY=VALUE. Can be repeated.")
@click.option("--timeout", type=float, required=False, default=None, help="Timeout of the action in seconds.")
@click.option("--spawn-strategy", type=click.Choice(["local", "remote"]), required=False, default=None, help="Where to execute the action on a cache miss.")
@click.option("--remote-executor", required=False, default=None, help="Address (host:port) of a remex worker.")
@click.option("--remote-cache", required=False, default=None, help="Address (host:port) of a gRPC cache.")
@click.option("--remote-rest-cache", required=False, default=None, help="Base url of a REST cache.")
@click.argument("arguments", nargs=-1, required=True)
def run(
        config_file:str|None,
        exec_root:str|None,
        inputs:tuple[str],
        outputs:tuple[str],
        env_vars:tuple[str],
        timeout:float|None,
        spawn_strategy:str|None,
        remote_executor:str|None,
        remote_cache:str|None,
        remote_rest_cache:str|None,
        arguments:tuple[str],
        ):
    """Runs one action through a build session and exits with its exit code.

    Put the command after '--', e.g. 'remex run -i in.txt -o out.txt -- cp in.txt out.txt'.
    """
    if exec_root is None:
        exec_root = os.getcwd()
    if not os.path.isdir(exec_root):
        raise click.ClickException(f"Exec root '{exec_root}' does not exist.")
    config = load_config(config_file, client_overrides={
        "spawn_strategy": spawn_strategy,
        "remote_executor": remote_executor,
        "remote_cache": remote_cache,
        "remote_rest_cache": remote_rest_cache,
        })
    spec = ActionSpec(
        arguments=list(arguments),
        inputs=list(inputs),
        outputs=list(outputs),
        environment=_parse_env(env_vars),
        timeout=timeout)

    async def ainit() -> tuple[ActionResult, bytes, bytes]:
        async with BuildSession(config.client) as session:
            result = await session.run(exec_root, spec)
            stdout = await session.read_blob(result.stdout_digest)
            stderr = await session.read_blob(result.stderr_digest)
            return result, stdout, stderr

    try:
        result, stdout, stderr = asyncio.run(ainit())
    except (RemexError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(stdout, nl=False)
    click.echo(stderr, nl=False, err=True)
    sys.exit(result.exit_code)

def _parse_env(env_vars:tuple[str]) -> dict[str, str]|None:
    if len(env_vars) == 0:
        return None
    environment = {}
    for env_var in env_vars:
        key, sep, value = env_var.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, but got '{env_var}'.", param_hint="--env")
        environment[key] = value
    return environment
