"""Kubernetes version gate for region initialization."""
import re
from typing import Optional, Tuple

MIN_SUPPORTED = (1, 19, 0)
MAX_SUPPORTED = (1, 26, 0)
SUPPORTED_RANGE = ">= v1.19.0 and < v1.26.0"

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?")


def parse_version(version: str) -> Optional[Tuple[int, int, int]]:
    """Parse ``v1.22.3``, ``1.22.3-rancher1`` and similar into a tuple."""
    match = _VERSION_RE.match((version or "").strip())
    if not match:
        return None
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def check_version(version: str) -> bool:
    """Return True when ``version`` lies in the supported range.

    Pre-release and build suffixes are ignored, so ``v1.26.0-rc.1`` is
    compared as 1.26.0 and rejected like the final release, while
    ``v1.19.0-rke`` is accepted.
    """
    parsed = parse_version(version)
    if parsed is None:
        return False
    return MIN_SUPPORTED <= parsed < MAX_SUPPORTED
