"""Per-cluster working directory of the installation engine."""
import logging
import os
import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from cloudadaptor.adaptor.rkeconfig import RKEConfig
from cloudadaptor.logging import TRACE, install_log_handler

logger = logging.getLogger("cloudadaptor.rke.statedir")

CLUSTER_FILE = "cluster.yml"
STATE_FILE = "cluster.rkestate"
LOG_FILE = "create.log"
BACKUP_SUFFIX = ".bak"
INSTALL_LOGGER = "cloudadaptor.rke.install"


class StateDirectory:
    """``<config_dir>/enterprise/<eid>/rke/<cluster_name>/``.

    Holds ``cluster.yml`` (declarative spec), ``cluster.rkestate`` (engine
    full state) and ``create.log`` (installer log). Clusters created before
    the enterprise layout keep their state file in
    ``<config_dir>/rke/<cluster_name>/``.
    """

    def __init__(self, config_dir: str, eid: str, cluster_name: str):
        self.config_dir = config_dir
        self.eid = eid
        self.cluster_name = cluster_name
        self.path = os.path.join(config_dir, "enterprise", eid, "rke", cluster_name)

    @property
    def cluster_file(self) -> str:
        return os.path.join(self.path, CLUSTER_FILE)

    @property
    def backup_file(self) -> str:
        return self.cluster_file + BACKUP_SUFFIX

    @property
    def state_file(self) -> str:
        return os.path.join(self.path, STATE_FILE)

    @property
    def legacy_state_file(self) -> str:
        return os.path.join(self.config_dir, "rke", self.cluster_name, STATE_FILE)

    @property
    def legacy_cluster_file(self) -> str:
        return os.path.join(self.config_dir, "rke", self.cluster_name, CLUSTER_FILE)

    @property
    def log_file(self) -> str:
        return os.path.join(self.path, LOG_FILE)

    def exists(self) -> bool:
        return os.path.isdir(self.path)

    def purge(self) -> None:
        """Remove the directory and everything in it."""
        if self.exists():
            logger.info(f"purging state directory {self.path}")
            shutil.rmtree(self.path)

    def ensure(self) -> None:
        os.makedirs(self.path, mode=0o700, exist_ok=True)

    def state_file_exists(self) -> bool:
        return os.path.exists(self.state_file) or os.path.exists(self.legacy_state_file)

    def adopt_legacy_state_file(self) -> bool:
        """Move a legacy-layout state file into this directory when it has none.

        The legacy file is removed so ``state_file_exists`` only reports the
        enterprise layout afterwards.

        Returns:
            True when a file was moved
        """
        if os.path.exists(self.state_file) or not os.path.exists(self.legacy_state_file):
            return False
        self.ensure()
        shutil.move(self.legacy_state_file, self.state_file)
        logger.info(f"moved legacy state file {self.legacy_state_file} to {self.state_file}")
        return True

    def write_cluster_config(self, rke_config: RKEConfig) -> None:
        with open(self.cluster_file, "w", encoding="utf-8") as f:
            f.write(rke_config.to_yaml())
        os.chmod(self.cluster_file, 0o600)

    def read_cluster_config(self) -> Optional[RKEConfig]:
        """Parse cluster.yml, falling back to the legacy layout.

        Returns:
            The spec, or None when neither layout has a cluster.yml
        """
        for path in (self.cluster_file, self.legacy_cluster_file):
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    return RKEConfig.from_yaml(f.read())
        return None

    def backup_cluster_config(self) -> bool:
        """Rename cluster.yml to cluster.yml.bak; False when there is nothing to back up."""
        if not os.path.exists(self.cluster_file):
            return False
        os.replace(self.cluster_file, self.backup_file)
        return True

    def restore_cluster_config(self) -> None:
        if os.path.exists(self.backup_file):
            os.replace(self.backup_file, self.cluster_file)

    def rotate_log(self) -> str:
        """Move create.log aside as create.log.<RFC3339 time>; return the new name."""
        if not os.path.exists(self.log_file):
            return ""
        stamp = datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")
        rotated = f"{self.log_file}.{stamp}"
        os.replace(self.log_file, rotated)
        return rotated

    @contextmanager
    def install_logger(self) -> Iterator[logging.Logger]:
        """Attach create.log (append mode) to a logger dedicated to this run.

        The logger is not registered with the logging manager, so nothing is
        left behind once the run ends. Records still propagate to
        ``cloudadaptor.rke.install``.
        """
        sink = logging.Logger(f"{INSTALL_LOGGER}.{self.eid}.{self.cluster_name}", TRACE)
        sink.parent = logging.getLogger(INSTALL_LOGGER)
        handler = install_log_handler(self.log_file)
        sink.addHandler(handler)
        try:
            yield sink
        finally:
            sink.removeHandler(handler)
            handler.close()
