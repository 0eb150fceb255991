import logging
import sys

import typer

from cloudadaptor.commands import cluster, db, serve, ssh, task
from cloudadaptor.config import get_settings
from cloudadaptor.logging import setup_logging

app = typer.Typer(help="Cloud adaptor - Kubernetes cluster lifecycle service.")

debug_mode = False

app.add_typer(db.app, name="db", help="Database maintenance")
app.add_typer(cluster.app, name="cluster", help="Inspect and delete clusters")
app.add_typer(task.app, name="task", help="Inspect provisioning tasks")
app.add_typer(ssh.app, name="ssh", help="SSH key and node reachability")
app.add_typer(serve.app, name="serve", help="Run the HTTP API")


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """Cloud adaptor - Kubernetes cluster lifecycle service."""
    global debug_mode
    debug_mode = debug
    setup_logging("debug" if debug else get_settings().log_level)
    if debug:
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            logging.exception(f"Unhandled exception: {e}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
