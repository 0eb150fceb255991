import typer

from cloudadaptor import commands

app = typer.Typer()


@app.command("events")
def list_events(
    task_id: str = typer.Argument(..., help="Task id"),
    eid: str = typer.Option(..., help="Enterprise id"),
):
    """Show the step events of a task."""
    events = commands.get_usecase().list_task_events(eid, task_id)
    if not events:
        print(f"🔍 No events for task {task_id}.")
        return
    for event in events:
        line = f"{event.step_type}\t{event.status}\t{event.message}"
        if event.reason:
            line += f"\t({event.reason})"
        print(line)
