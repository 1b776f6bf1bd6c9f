"""
Configuration management for the sync system.

Loads settings from environment variables (and a .env file) and provides
structured configuration for the Notion, object storage and database clients.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigurationError


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass
class StorageConfig:
    """Cloudflare R2 (S3-compatible) settings."""

    endpoint: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    public_url: str
    region: str = "auto"

    def __post_init__(self):
        self.public_url = self.public_url.rstrip("/")


@dataclass
class Config:
    """
    Central configuration for the sync system.

    Secrets come from environment variables only. Sections that a command
    does not need may be left unset, which is why ``database_url``,
    ``notion_token`` and ``storage`` are Optional.
    """

    database_url: Optional[str] = None
    notion_token: Optional[str] = None
    storage: Optional[StorageConfig] = None

    table_name: str = "sonder_post"
    config_table_name: str = "anivia_config"

    log_level: str = "INFO"
    display_timezone: str = "Asia/Shanghai"
    export_dir: Path = field(default_factory=lambda: Path("exported-posts"))

    # Sync behavior
    debug: bool = False
    force_sync: bool = False

    @property
    def tz(self) -> ZoneInfo:
        """Timezone used for CLI time arguments and exported timestamps."""
        return ZoneInfo(self.display_timezone)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        *,
        need_notion: bool = True,
        need_storage: bool = True,
        need_database: bool = True,
    ) -> "Config":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file. If not provided,
                     looks for .env in current directory.
            need_notion: Require NOTION_TOKEN.
            need_storage: Require the R2 settings.
            need_database: Require DATABASE_URL.

        Returns:
            Configured Config instance.

        Raises:
            ConfigurationError: If required environment variables are missing.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        database_url = os.getenv("DATABASE_URL")
        if need_database and not database_url:
            raise ConfigurationError(
                "DATABASE_URL environment variable is required.\n"
                "Use the Postgres connection string from Supabase → Project Settings → Database."
            )

        notion_token = os.getenv("NOTION_TOKEN")
        if need_notion and not notion_token:
            raise ConfigurationError(
                "NOTION_TOKEN environment variable is required.\n"
                "Create a Notion integration at https://www.notion.so/my-integrations"
            )

        storage = cls._storage_from_env() if need_storage else None

        config = cls(
            database_url=database_url,
            notion_token=notion_token,
            storage=storage,
            table_name=os.getenv("DATABASE_TABLE", "sonder_post"),
            config_table_name=os.getenv("DATABASE_CONFIG_TABLE", "anivia_config"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            display_timezone=os.getenv("DISPLAY_TIMEZONE", "Asia/Shanghai"),
            export_dir=Path(os.getenv("EXPORT_DIR", "exported-posts")),
            debug=_env_flag("DEBUG"),
            force_sync=_env_flag("FORCE_SYNC"),
        )

        try:
            config.tz
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigurationError(f"DISPLAY_TIMEZONE is not a known timezone: {config.display_timezone}")

        return config

    @staticmethod
    def _storage_from_env() -> StorageConfig:
        missing = [
            name
            for name in ("R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET", "R2_PUBLIC_URL")
            if not os.getenv(name)
        ]

        endpoint = os.getenv("R2_ENDPOINT")
        if not endpoint:
            account_id = os.getenv("R2_ACCOUNT_ID")
            if account_id:
                endpoint = f"https://{account_id}.r2.cloudflarestorage.com"
            else:
                missing.append("R2_ACCOUNT_ID (or R2_ENDPOINT)")

        if missing:
            raise ConfigurationError(
                "Object storage settings are incomplete, missing: "
                + ", ".join(missing)
                + "\nCreate an R2 API token in the Cloudflare dashboard → R2 → Manage API tokens."
            )

        return StorageConfig(
            endpoint=endpoint,
            access_key_id=os.environ["R2_ACCESS_KEY_ID"],
            secret_access_key=os.environ["R2_SECRET_ACCESS_KEY"],
            bucket=os.environ["R2_BUCKET"],
            public_url=os.environ["R2_PUBLIC_URL"],
        )
