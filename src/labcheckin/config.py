"""Manage configuration settings for the lab check-in kiosk."""

import argparse
import dataclasses
import enum
import pathlib
import shutil
import tomllib
from typing import Optional

from sqlalchemy import engine


CONFIG_FILE_NAME = "labcheckin.toml"
DEFAULT_DATA_DIR = pathlib.Path.home() / ".labcheckin" / "data"


class ConfigError(Exception):
    """Errors when setting or accessing settings."""

    class ErrorType(enum.Enum):
        NOT_A_FILE = 1
        PATH_DOES_NOT_EXIST = 2
        NO_ENDPOINTS = 3

    error_type: ErrorType

    def __init__(self, message: str, error_type: ErrorType) -> None:
        """Set error type."""
        super().__init__(message)
        self.error_type = error_type


@dataclasses.dataclass
class Settings:
    """Configuration data for the check-in kiosk.

    The central database is reached through one of several hosts, tried in
    order. Set store_urls to bypass the host list and give complete
    SQLAlchemy URLs instead (handy for a local SQLite store).

    admin_password_hash is a SHA256 hash created with the hashlib library.
    The default password is 1318.
    """

    config_path: Optional[pathlib.Path] = None
    data_dir: pathlib.Path = DEFAULT_DATA_DIR
    hosts: list[str] = dataclasses.field(default_factory=lambda: ["10.30.1.36"])
    port: int = 5432
    database: str = "laboratorio-fcm"
    username: str = "postgres"
    password: Optional[str] = None
    driver: str = "postgresql+asyncpg"
    store_urls: list[str] = dataclasses.field(default_factory=list)
    pool_size: int = 5
    connect_timeout: float = 30.0
    reconnect_timeout: float = 10.0
    probe_debounce: float = 10.0
    refresh_interval: float = 60.0
    health_interval: float = 60.0
    ui_health_interval: float = 30.0
    admin_password_hash: Optional[str] = (
        "095eaa09cd36d1f1e7a963c9ad618edab13f466882c9027ab81ffc18b0eb727e"  # 1318
    )
    log_level: str = "INFO"
    station_count: int = 26
    schools: list[str] = dataclasses.field(
        default_factory=lambda: ["Nursing", "Obstetrics", "Other"]
    )
    durations: list[str] = dataclasses.field(
        default_factory=lambda: [
            "15 minutes", "30 minutes", "45 minutes", "60 minutes", "120 minutes"
        ]
    )

    @property
    def endpoints(self) -> list[str]:
        """Candidate database URLs in configured order, without duplicates."""
        if self.store_urls:
            urls = list(self.store_urls)
        else:
            urls = [
                engine.URL.create(
                    self.driver,
                    username=self.username,
                    password=self.password,
                    host=host,
                    port=self.port,
                    database=self.database,
                ).render_as_string(hide_password=False)
                for host in self.hosts
            ]
        return list(dict.fromkeys(urls))

    def update_from_args(self, args: argparse.Namespace) -> None:
        """Read settings from command line arguments and the config file."""
        config_path = getattr(args, "config_path", None)
        if config_path is not None:
            self.config_path = self._get_full_path(config_path)
            self._read_config_file()
        data_dir = getattr(args, "data_dir", None)
        if data_dir is not None:
            self.data_dir = self._convert_path_to_absolute(data_dir)

    @staticmethod
    def _convert_path_to_absolute(path: pathlib.Path | str) -> pathlib.Path:
        """Convert relative paths to absolute paths."""
        if isinstance(path, str):
            path = pathlib.Path(path)
        path = path.expanduser()
        return path if path.is_absolute() else pathlib.Path.cwd() / path

    @classmethod
    def _get_full_path(cls, path: pathlib.Path) -> pathlib.Path:
        """Convert path arg to full filesystem path of an existing file."""
        full_path = cls._convert_path_to_absolute(path)
        if not full_path.exists():
            raise ConfigError(
                f"Configuration file {full_path} does not exist.",
                ConfigError.ErrorType.PATH_DOES_NOT_EXIST,
            )
        if not full_path.is_file():
            raise ConfigError(
                f"Configuration path {full_path} is not a file.",
                ConfigError.ErrorType.NOT_A_FILE,
            )
        return full_path

    def _read_config_file(self) -> None:
        """Read TOML configuration file."""
        if self.config_path is None:
            return
        app_settings = dataclasses.asdict(self)
        with open(self.config_path, "rb") as toml_file:
            file_settings = tomllib.load(toml_file)
        for setting_name, value in file_settings.items():
            if setting_name not in app_settings or setting_name == "config_path":
                continue
            if setting_name == "data_dir":
                self.data_dir = self._convert_path_to_absolute(value)
            elif isinstance(value, str) and value.lower() in ["", "none", "null"]:
                setattr(self, setting_name, None)
            else:
                setattr(self, setting_name, value)
        if not self.endpoints:
            raise ConfigError(
                f"No database hosts or store_urls in {self.config_path}.",
                ConfigError.ErrorType.NO_ENDPOINTS,
            )

    def create_new_config_file(self, config_path: pathlib.Path) -> None:
        """Create a new configuration file with default settings."""
        if not config_path.exists():
            shutil.copy(
                pathlib.Path(__file__).parent / "example-config.toml", config_path
            )


# Store settings in a module-level variable, which will be available from any
# other module that imports labcheckin.config. Components never read it
# directly; the entry points pass it to CheckinService.
settings = Settings()
