"""Typer sub-commands of the cloudadaptor CLI."""
from typing import Optional

import typer

from cloudadaptor import errors
from cloudadaptor.config import get_settings
from cloudadaptor.usecase import ClusterUsecase, new_usecase

_usecase: Optional[ClusterUsecase] = None


def get_usecase() -> ClusterUsecase:
    """Return the process use-case layer, opening the database on first use."""
    global _usecase
    if _usecase is None:
        _usecase = new_usecase(get_settings())
    return _usecase


def set_usecase(usecase: Optional[ClusterUsecase]) -> None:
    global _usecase
    _usecase = usecase


def fail(err: errors.BusinessError) -> None:
    print(f"❌ {err.msg} (code {err.code})")
    raise typer.Exit(code=1)
