"""Configuration schema using Pydantic.

Why this exists:
- Type-safe configuration with validation
- Environment variable support
- Multiple deployment profiles (local, server, ...)
- Clear documentation of all settings

How to extend:
1. Add new fields to existing config classes
2. Create new config classes for new components
3. Document the new settings in the TOML config file
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RepositoryStoreType(str, Enum):
    """Supported repository stores."""

    PROPERTIES = "properties"
    MEMORY = "memory"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = LogLevel.INFO
    json_logs: bool = False
    enable_file: bool = False
    log_dir: Optional[Path] = None
    max_days: int = Field(default=30, gt=0)

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in paths."""
        if self.log_dir:
            self.log_dir = self.log_dir.expanduser()


class StorageConfig(BaseModel):
    """Repository store configuration.

    ``location`` is the base storage: new repositories default to
    ``<location>/<name>`` and the registry file lives directly under it.
    """

    store_type: RepositoryStoreType = RepositoryStoreType.PROPERTIES
    location: Optional[Path] = None
    store_file: str = "repositories.db"
    persist_scheduling: bool = False

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in paths."""
        if self.location:
            self.location = self.location.expanduser()


class PublicationConfig(BaseModel):
    """Endpoint publication configuration."""

    http_context: str = "/depot/repository"


class RepositoryDefaults(BaseModel):
    """Defaults applied to repositories created without explicit values."""

    realm: Optional[str] = "depot"
    pool_size: int = Field(default=8, gt=0)


class TransferConfig(BaseModel):
    """Artifact transfer configuration.

    ``remote_repositories`` are tried in order when resolving ``mvn:`` URLs;
    entries may be ``http(s)://`` URLs, ``file:`` URLs or local paths.
    """

    remote_repositories: list[str] = Field(
        default_factory=lambda: ["https://repo1.maven.org/maven2"]
    )
    timeout: float = Field(default=30.0, gt=0)
    follow_redirects: bool = True
    extra_params: dict[str, Any] = Field(default_factory=dict)


class IndexerConfig(BaseModel):
    """Bundle descriptor indexer configuration."""

    descriptor_name: str = "repository.xml"
    read_fully: bool = True


class AppConfig(BaseSettings):
    """Main application configuration.

    Loads from:
    1. Config file (TOML)
    2. Environment variables (prefixed with DEPOT_)
    3. .env file
    """

    model_config = SettingsConfigDict(
        env_prefix="DEPOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Application settings
    app_name: str = "depot"
    data_dir: Path = Field(default=Path.home() / ".depot")

    # Component configurations
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    publication: PublicationConfig = Field(default_factory=PublicationConfig)
    defaults: RepositoryDefaults = Field(default_factory=RepositoryDefaults)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
    indexer: IndexerConfig = Field(default_factory=IndexerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Environment variables take precedence over values from the config file."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def model_post_init(self, __context: Any) -> None:
        """Post-initialization: resolve the base storage under data_dir."""
        self.data_dir = self.data_dir.expanduser()
        if self.storage.location is None:
            self.storage.location = self.data_dir / "repository"
