"""
SSH key management and node reachability checks.
"""
import io
import logging
import os
import socket
from pathlib import Path
from typing import Optional, Tuple

import paramiko

from cloudadaptor import errors

logger = logging.getLogger("cloudadaptor.ssh")

SSH_USER = "docker"
SSH_TIMEOUT = 5
KEY_BITS = 2048


def ssh_dir(home: Optional[str] = None) -> Path:
    return Path(home or os.path.expanduser("~")) / ".ssh"


def make_ssh_key_pair(bits: int = KEY_BITS) -> Tuple[str, str]:
    """Generate an RSA key pair.

    Returns:
        Tuple of (private key in PEM form, public key in authorized_keys form)
    """
    key = paramiko.RSAKey.generate(bits)
    buf = io.StringIO()
    key.write_private_key(buf)
    public = f"{key.get_name()} {key.get_base64()}\n"
    return buf.getvalue(), public


def get_or_make_ssh_rsa(home: Optional[str] = None) -> str:
    """Return the public key under ``~/.ssh``, generating the pair if missing.

    Args:
        home: Home directory to use instead of the current user's

    Returns:
        The public key text
    """
    directory = ssh_dir(home)
    private_path = directory / "id_rsa"
    public_path = directory / "id_rsa.pub"
    if private_path.exists() and public_path.exists():
        return public_path.read_text()

    logger.info(f"SSH key pair not found in {directory}, generating a new one")
    directory.mkdir(mode=0o700, parents=True, exist_ok=True)
    private, public = make_ssh_key_pair()
    private_path.write_text(private)
    os.chmod(private_path, 0o600)
    public_path.write_text(public)
    os.chmod(public_path, 0o644)
    return public


def check_ssh_connect(host: str, port: int, key_path: Optional[str] = None,
                      user: str = SSH_USER, timeout: int = SSH_TIMEOUT) -> None:
    """Verify that ``host`` accepts our key.

    Host keys are not verified; this only tests operator reachability.

    Raises:
        BusinessError: SSHFileNotFound, SSHParse or SSHConnect
    """
    path = key_path or str(ssh_dir() / "id_rsa")
    if not os.path.exists(path):
        raise errors.SSHFileNotFound(f"ssh private key {path} not found")
    try:
        pkey = paramiko.RSAKey.from_private_key_file(path)
    except (paramiko.SSHException, OSError) as e:
        raise errors.SSHParse(f"parse ssh private key failure: {e}") from e

    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        ssh.connect(
            hostname=host,
            port=int(port),
            username=user,
            pkey=pkey,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
    except (paramiko.SSHException, socket.error) as e:
        logger.debug(f"ssh connect to {host}:{port} failed: {e}")
        raise errors.SSHConnect(f"ssh connect to {host}:{port} failure: {e}") from e
    finally:
        ssh.close()
