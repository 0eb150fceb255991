import typer

from cloudadaptor.config import get_settings
from cloudadaptor.datastore import Database

app = typer.Typer()


@app.command("migrate")
def migrate_cmd():
    """Create the cluster, task and event tables."""
    settings = get_settings()
    db = Database.from_settings(settings)
    try:
        db.migrate()
    finally:
        db.dispose()
    print(f"✅ Database migrated ({settings.db.type})")
