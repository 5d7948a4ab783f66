"""
Configuration management for the evidence ledger

Loads settings from:
1. An optional YAML file (config/ledger.yaml)
2. Environment variables prefixed with LEDGER_ (and .env)
3. Default values
"""

from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables
load_dotenv()

MIB = 1024 * 1024


class LedgerConfig(BaseSettings):
    """Central configuration for the ledger core."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage ---
    cards_table: str = "LedgerCards"
    sources_table: str = "LedgerSources"
    sources_bucket: str = "ledger-sources"

    # --- Signing ---
    signing_key_id: str = Field(default="local-dev-key")
    local_signing_secret: str = "ledger-local-dev-secret"

    # --- Limits ---
    presigned_url_expiry_seconds: int = Field(default=3600, gt=0)
    max_upload_bytes: int = Field(default=50 * MIB, gt=0)
    max_snapshot_bytes: int = Field(default=5 * MIB, gt=0)
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)
    fetch_user_agent: str = "AccountabilityLedger/1.0 (+snapshot)"

    # --- Listing ---
    default_page_size: int = 20
    max_page_size: int = 100
    published_scan_buckets: int = Field(default=12, ge=1)
    reference_lookup: Literal["reverse_index", "bucket_scan"] = "reverse_index"

    # --- Feature Flags ---
    read_only: bool = False

    # --- Logging ---
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path = "config/ledger.yaml") -> "LedgerConfig":
        """Load configuration from YAML file, falling back to env/defaults"""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            return cls()

        with open(yaml_path) as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def clamp_page_size(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return self.default_page_size
        return min(limit, self.max_page_size)


# Global configuration instance
_config: Optional[LedgerConfig] = None


def get_config() -> LedgerConfig:
    """Get or create global configuration instance"""
    global _config
    if _config is None:
        _config = LedgerConfig.from_yaml()
    return _config


def reload_config(yaml_path: Optional[str | Path] = None) -> LedgerConfig:
    """Reload configuration from file"""
    global _config
    _config = LedgerConfig.from_yaml(yaml_path) if yaml_path else LedgerConfig.from_yaml()
    return _config
