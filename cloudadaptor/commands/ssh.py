import typer

from cloudadaptor import commands, errors
from cloudadaptor.utils.sshkey import SSH_USER, check_ssh_connect, get_or_make_ssh_rsa

app = typer.Typer()


@app.command("pubkey")
def pubkey():
    """Print the service public key, generating the key pair when missing."""
    print(get_or_make_ssh_rsa().strip())


@app.command("check")
def check(
    host: str = typer.Argument(..., help="Node address"),
    port: int = typer.Option(22, help="SSH port"),
    user: str = typer.Option(SSH_USER, help="SSH user"),
):
    """Check that a node accepts the service key."""
    try:
        check_ssh_connect(host, port, user=user)
    except errors.BusinessError as e:
        commands.fail(e)
    print(f"✅ {user}@{host}:{port} is reachable")
