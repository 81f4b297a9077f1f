import logging
import click
from .cli_worker import worker
from .cli_cache import cache
from .cli_run import run

#print logs to console
logging.basicConfig(level=logging.INFO)

# Main CLI of remex: start workers and caches, or run single actions against them.
# It utilizes the 'click' library.

@click.group()
def cli():
    pass

cli.add_command(worker, name="worker")
cli.add_command(cache, name="cache")
cli.add_command(run, name="run")

if __name__ == '__main__':
    cli(None)
