"""
Configuration validation for ServiceSync.

Provides a pydantic-settings model loaded from SSYNC_-prefixed environment
variables and an optional YAML file, with fail-fast validation and sensible
defaults. Collection names are configuration data, never literals in code.
"""

from __future__ import annotations

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

log = logging.getLogger('ServiceSync.config')

DEFAULT_CONFIG_FILE = "servicesync.yml"

_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,63}$')


def _config_file() -> str:
    return os.environ.get("SSYNC_CONFIG_FILE", DEFAULT_CONFIG_FILE)


class DownstreamStoreConfig(BaseModel):
    """
    One downstream system-of-record collection checked for existing services.

    Attributes:
        name: Store name used in logs and matches (e.g. "appointments")
        collection: Firestore collection id
        tag: Label written to PendingRecord.integratedIn on a match
        id_field: Document field holding the service number
        status_field: Document field holding the downstream status
    """

    name: str
    collection: str
    tag: str
    id_field: str = "serviceNumber"
    status_field: str = "status"

    @field_validator('name', 'collection', 'tag', 'id_field', 'status_field', mode='after')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('must not be empty')
        return v


def _default_stores() -> list[DownstreamStoreConfig]:
    return [
        DownstreamStoreConfig(name="appointments", collection="appointments", tag="calendar"),
        DownstreamStoreConfig(name="services", collection="services", tag="services"),
        DownstreamStoreConfig(name="alta", collection="alta_servicios", tag="alta"),
    ]


class ServiceSyncConfig(BaseSettings):
    """
    ServiceSync configuration with validation.

    Precedence (highest to lowest):
    1. Values passed to the constructor (CLI overrides, tests)
    2. SSYNC_-prefixed environment variables
    3. YAML config file (SSYNC_CONFIG_FILE, default ./servicesync.yml)
    4. Defaults defined below

    Firestore connection (required for a real run, optional for dry tooling):
        firestore_project_id: GCP project holding the downstream collections
        firestore_token: OAuth bearer token (credential storage is external)

    Tunables:
        existence_batch_size: Ids per "IN" query (default: 10, range: 1-10)
        existence_concurrency: Concurrent existence batches (default: 4, range: 1-16)
        completed_statuses: Downstream statuses meaning "work finished"
        reconcile_interval: never, hourly, daily, weekly
    """

    model_config = SettingsConfigDict(
        env_prefix="SSYNC_",
        extra="ignore",
    )

    provider_name: str = "HomeServe"
    data_dir: str = "./data"
    staging_collection: str = "pending_services"
    snapshot_path: Optional[str] = None

    # Downstream Firestore
    firestore_project_id: Optional[str] = None
    firestore_base_url: str = "https://firestore.googleapis.com/v1"
    firestore_token: Optional[str] = None
    firestore_timeout: float = Field(default=10.0, ge=1.0, le=120.0)

    downstream_stores: list[DownstreamStoreConfig] = Field(default_factory=_default_stores)
    promote_store: str = "alta"

    # Existence resolution
    existence_batch_size: int = Field(default=10, ge=1, le=10)
    existence_concurrency: int = Field(default=4, ge=1, le=16)
    completed_statuses: list[str] = Field(
        default_factory=lambda: ["completed", "finalizado", "finished", "done"]
    )

    # Run control
    reconcile_interval: str = Field(
        default="never",
        description="Interval for --if-due runs: never, hourly, daily, weekly"
    )
    dry_run: bool = Field(
        default=False,
        description="Compute decisions without writing to the staging collection"
    )

    # Logging / admin surface
    log_level: str = "info"
    admin_port: int = Field(default=9090, ge=1, le=65535)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Return sources in priority order: init > env > YAML."""
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings]
        config_file = _config_file()
        if Path(config_file).is_file():
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=config_file))
        return tuple(sources)

    @property
    def staging_db_path(self) -> str:
        """SQLite database holding the staging collection."""
        return os.path.join(self.data_dir, "staging.db")

    @property
    def firestore_enabled(self) -> bool:
        return bool(self.firestore_project_id)

    def store(self, name: str) -> DownstreamStoreConfig:
        """Look up a configured downstream store by name."""
        for store in self.downstream_stores:
            if store.name == name:
                return store
        raise KeyError(f"Unknown downstream store: {name}")

    @field_validator('provider_name', mode='after')
    @classmethod
    def validate_provider_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('provider_name is required')
        return v

    @field_validator('staging_collection', mode='after')
    @classmethod
    def validate_staging_collection(cls, v: str) -> str:
        """Collection names become SQLite table names: identifiers only."""
        if not _IDENTIFIER_RE.match(v):
            raise ValueError('staging_collection must be a letter/underscore identifier')
        return v

    @field_validator('firestore_base_url', mode='after')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://')):
            raise ValueError('firestore_base_url must start with http:// or https://')
        return v.rstrip('/')

    @field_validator('completed_statuses', mode='after')
    @classmethod
    def validate_completed_statuses(cls, v: list[str]) -> list[str]:
        statuses = [s.strip().lower() for s in v if s and s.strip()]
        if not statuses:
            raise ValueError('completed_statuses must not be empty')
        return statuses

    @field_validator('reconcile_interval', mode='before')
    @classmethod
    def validate_reconcile_interval(cls, v):
        """Validate reconcile_interval is one of: never, hourly, daily, weekly."""
        valid = ('never', 'hourly', 'daily', 'weekly')
        if isinstance(v, str) and v.lower() in valid:
            return v.lower()
        raise ValueError(f"reconcile_interval must be one of {valid}, got: {v}")

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        valid = ('trace', 'debug', 'info', 'warning', 'error')
        if isinstance(v, str) and v.lower() in valid:
            return v.lower()
        raise ValueError(f"log_level must be one of {valid}, got: {v}")

    @field_validator('dry_run', mode='before')
    @classmethod
    def validate_booleans(cls, v):
        """Ensure boolean fields are actual booleans, not truthy strings."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            lower = v.lower()
            if lower in ('true', '1', 'yes'):
                return True
            if lower in ('false', '0', 'no'):
                return False
            raise ValueError(f"Invalid boolean value: {v}")
        raise ValueError(f"Expected boolean, got {type(v).__name__}")

    @model_validator(mode='after')
    def validate_stores(self) -> "ServiceSyncConfig":
        names = [s.name for s in self.downstream_stores]
        if len(names) != len(set(names)):
            raise ValueError('downstream_stores names must be unique')
        if self.promote_store not in names:
            raise ValueError(f"promote_store '{self.promote_store}' is not a configured downstream store")
        return self

    def log_config(self) -> None:
        """Log configuration with masked token for security."""
        token = self.firestore_token or ''
        if len(token) > 8:
            masked = token[:4] + '****' + token[-4:]
        elif token:
            masked = '****'
        else:
            masked = '(none)'
        stores = ', '.join(f"{s.name}->{s.collection}" for s in self.downstream_stores)
        log.info(
            f"ServiceSync config: provider={self.provider_name}, "
            f"staging={self.staging_db_path}:{self.staging_collection}, "
            f"firestore_project={self.firestore_project_id}, token={masked}, "
            f"stores=[{stores}], promote_store={self.promote_store}, "
            f"batch_size={self.existence_batch_size}, "
            f"concurrency={self.existence_concurrency}, "
            f"interval={self.reconcile_interval}, dry_run={self.dry_run}"
        )
        if self.dry_run:
            log.warning("DRY RUN: decisions are logged but nothing is written to staging")


def validate_config(config_dict: dict) -> tuple[Optional[ServiceSyncConfig], Optional[str]]:
    """
    Validate configuration dictionary and return ServiceSyncConfig or error message.

    Args:
        config_dict: Dictionary containing configuration values

    Returns:
        Tuple of (ServiceSyncConfig, None) on success,
        or (None, error_message) on validation failure
    """
    try:
        config = ServiceSyncConfig(**config_dict)
        return (config, None)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field = '.'.join(str(loc) for loc in error['loc'])
            msg = error['msg']
            errors.append(f"{field}: {msg}" if field else msg)
        error_message = '; '.join(errors)
        return (None, error_message)


@lru_cache(maxsize=1)
def get_settings() -> ServiceSyncConfig:
    """Return the cached ServiceSyncConfig built from environment and YAML."""
    return ServiceSyncConfig()


# Re-export ValidationError for external use
__all__ = ['ServiceSyncConfig', 'DownstreamStoreConfig', 'validate_config', 'get_settings', 'ValidationError']
