import logging

import typer
import uvicorn

from cloudadaptor import commands
from cloudadaptor.api.main import create_app
from cloudadaptor.config import get_settings

app = typer.Typer()

logger = logging.getLogger("cloudadaptor.serve")

UVICORN_LEVELS = {"trace": "trace", "debug": "debug", "info": "info", "warn": "warning", "error": "error"}


@app.callback(invoke_without_command=True)
def serve(
    host: str = typer.Option("0.0.0.0", help="Listen address"),
    port: int = typer.Option(8080, help="Listen port"),
):
    """Run the HTTP API."""
    settings = get_settings()
    usecase = commands.get_usecase()
    api = create_app(usecase, settings.api_key)
    logger.info(f"cloudadaptor api listening on {host}:{port}")
    try:
        uvicorn.run(api, host=host, port=port, log_level=UVICORN_LEVELS.get(settings.log_level, "info"))
    finally:
        usecase.workers.shutdown(wait=True, cancel=True)
        usecase.db.dispose()
