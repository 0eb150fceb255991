"""Configuration management for the cloudadaptor service.

Values come from the process environment, optionally seeded from a ``.env``
file. The resulting :class:`Settings` object is built once at startup and
passed to the components that need it.
"""
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_KUBERNETES_VERSION = "v1.23.10-rancher1"
DEFAULT_CONFIG_DIR = "/tmp"
DEFAULT_DB_PATH = "./data/db"
SQLITE_FILE_NAME = "db.sqlite3"

LOG_LEVELS = ("trace", "debug", "info", "warn", "error")


def _as_bool(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


class DBConfig(BaseModel):
    """Relational store configuration."""
    type: str = Field(default="sqlite3", description="sqlite3 or mysql")
    path: str = Field(default=DEFAULT_DB_PATH, description="Directory of the embedded store")
    host: str = "127.0.0.1"
    port: int = 3306
    user: str = ""
    password: str = ""
    name: str = ""

    @field_validator("type")
    @classmethod
    def check_type(cls, v: str) -> str:
        v = (v or "sqlite3").lower()
        if v not in ("sqlite3", "mysql"):
            raise ValueError(f"unsupported DB_TYPE {v!r}, expected sqlite3 or mysql")
        return v

    @property
    def url(self) -> str:
        if self.type == "mysql":
            return (
                f"mysql+pymysql://{self.user}:{self.password}@{self.host}:{self.port}"
                f"/{self.name}?charset=utf8mb4"
            )
        return f"sqlite:///{os.path.join(self.path, SQLITE_FILE_NAME)}"


class NSQConfig(BaseModel):
    """Message bus endpoints, carried for compatibility with bus-driven deployments."""
    lookupd_server: str = ""
    nsqd_server: str = ""


class Settings(BaseModel):
    """Process-wide configuration."""
    test_mode: bool = False
    log_level: str = "info"
    config_dir: str = DEFAULT_CONFIG_DIR
    default_kubernetes_version: str = DEFAULT_KUBERNETES_VERSION
    task_workers: int = 4
    describe_workers: int = 10
    api_key: str = ""
    db: DBConfig = Field(default_factory=DBConfig)
    nsq: NSQConfig = Field(default_factory=NSQConfig)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        v = (v or "info").lower()
        return v if v in LOG_LEVELS else "info"

    @property
    def database_url(self) -> str:
        return self.db.url

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Settings instance
        """
        env = os.environ if environ is None else environ
        return cls(
            test_mode=_as_bool(env.get("TEST_MODE")),
            log_level=env.get("LOG_LEVEL", "info"),
            config_dir=env.get("CONFIG_DIR") or DEFAULT_CONFIG_DIR,
            default_kubernetes_version=env.get("DEFAULT_KUBERNETES_VERSION") or DEFAULT_KUBERNETES_VERSION,
            task_workers=int(env.get("TASK_WORKERS", "4")),
            describe_workers=int(env.get("DESCRIBE_WORKERS", "10")),
            api_key=env.get("CLOUDADAPTOR_API_KEY", ""),
            db=DBConfig(
                type=env.get("DB_TYPE", "sqlite3"),
                path=env.get("DB_PATH") or DEFAULT_DB_PATH,
                host=env.get("MYSQL_HOST", "127.0.0.1"),
                port=int(env.get("MYSQL_PORT") or 3306),
                user=env.get("MYSQL_USER", ""),
                password=env.get("MYSQL_PASS", ""),
                name=env.get("MYSQL_DB", ""),
            ),
            nsq=NSQConfig(
                lookupd_server=env.get("NSQ_LOOKUPD_SERVER", ""),
                nsqd_server=env.get("NSQD_SERVER", ""),
            ),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings
