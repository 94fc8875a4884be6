"""Layered configuration for plotcrm.

Precedence, highest first: keyword arguments, ``PLOTCRM_*`` environment
variables (``__`` separates nested sections), ``.env`` files, then TOML files
(``PLOTCRM_SETTINGS_FILE``, ``config/settings.local.toml``,
``config/settings.default.toml``).
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "PLOTCRM_ENV"
SETTINGS_FILE_ENV_VAR = "PLOTCRM_SETTINGS_FILE"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"

# Firestore rejects write batches with more than 500 operations.
FIRESTORE_MAX_BATCH = 500


def _active_env(explicit: str | None = None) -> str:
    return (explicit or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _dotenv_files(env: str) -> list[Path]:
    names = (".env", f".env.{env}", ".env.local")
    return [PROJECT_ROOT / name for name in names if (PROJECT_ROOT / name).exists()]


def _config_files() -> tuple[Path, ...]:
    """Existing TOML config files, highest precedence first.

    A relative ``PLOTCRM_SETTINGS_FILE`` is resolved against the project root.
    """

    candidates: list[Path] = []
    override = os.getenv(SETTINGS_FILE_ENV_VAR)
    if override:
        path = Path(override).expanduser()
        candidates.append(path if path.is_absolute() else (PROJECT_ROOT / path).resolve())
    candidates.extend([LOCAL_CONFIG_FILE, DEFAULT_CONFIG_FILE])
    return tuple(path for path in candidates if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source reading one TOML file; section tables map to nested settings."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        try:
            with path.open("rb") as handle:
                self._values: dict[str, Any] = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{path} is not valid TOML: {exc}") from exc

    def get_field_value(self, field, field_name: str) -> tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self._values)


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class StorageSettings(BaseSettings):
    """Canonical document store (Firestore) configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    firestore_project: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FIRESTORE_PROJECT", "STORAGE__FIRESTORE_PROJECT"),
    )
    firestore_database: str | None = Field(
        default=None,
        validation_alias=AliasChoices("FIRESTORE_DATABASE", "STORAGE__FIRESTORE_DATABASE"),
    )
    customers_collection: str = Field(
        default="Customers",
        validation_alias=AliasChoices("CUSTOMERS_COLLECTION", "STORAGE__CUSTOMERS_COLLECTION"),
    )
    search_lists_collection: str = Field(
        default="CustomerSearchLists",
        validation_alias=AliasChoices("SEARCH_LISTS_COLLECTION", "STORAGE__SEARCH_LISTS_COLLECTION"),
    )


class SearchIndexSettings(BaseSettings):
    """Vertex AI Search data store wiring and index presentation settings."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    project: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VERTEX_SEARCH_PROJECT", "SEARCH_INDEX__PROJECT"),
    )
    location: str = Field(
        default="global",
        validation_alias=AliasChoices("VERTEX_SEARCH_LOCATION", "SEARCH_INDEX__LOCATION"),
    )
    data_store: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VERTEX_SEARCH_DATA_STORE", "SEARCH_INDEX__DATA_STORE"),
    )
    branch: str = Field(
        default="default_branch",
        validation_alias=AliasChoices("VERTEX_SEARCH_BRANCH", "SEARCH_INDEX__BRANCH"),
    )
    serving_config: str = Field(
        default="default_search",
        validation_alias=AliasChoices("VERTEX_SEARCH_SERVING_CONFIG", "SEARCH_INDEX__SERVING_CONFIG"),
    )
    searchable_attributes: list[str] = Field(
        default_factory=lambda: [
            "name",
            "nameKana",
            "searchName",
            "searchNameKana",
            "trackingNo",
            "phone",
            "phoneOriginal",
            "address",
            "email",
            "memo",
        ],
        validation_alias=AliasChoices("SEARCH_INDEX__SEARCHABLE_ATTRIBUTES"),
    )
    attributes_to_retrieve: list[str] = Field(
        default_factory=lambda: [
            "objectID",
            "firestoreId",
            "trackingNo",
            "name",
            "nameKana",
            "phone",
            "phoneOriginal",
            "email",
            "address",
            "addressPrefecture",
            "addressCity",
            "branch",
            "customerCategory",
            "assignedTo",
            "memo",
            "status",
            "hasDeals",
            "hasTreeBurialDeals",
            "hasBurialPersons",
            "createdAt",
            "updatedAt",
        ],
        validation_alias=AliasChoices("SEARCH_INDEX__ATTRIBUTES_TO_RETRIEVE"),
    )
    attributes_to_highlight: list[str] = Field(
        default_factory=lambda: ["name", "nameKana", "address"],
        validation_alias=AliasChoices("SEARCH_INDEX__ATTRIBUTES_TO_HIGHLIGHT"),
    )
    attributes_for_faceting: list[str] = Field(
        default_factory=lambda: ["addressPrefecture", "status"],
        validation_alias=AliasChoices("SEARCH_INDEX__ATTRIBUTES_FOR_FACETING"),
    )
    typo_tolerance: bool = Field(
        default=True,
        validation_alias=AliasChoices("SEARCH_INDEX_TYPO_TOLERANCE", "SEARCH_INDEX__TYPO_TOLERANCE"),
    )
    hits_per_page: int = Field(
        default=100,
        validation_alias=AliasChoices("SEARCH_INDEX_HITS_PER_PAGE", "SEARCH_INDEX__HITS_PER_PAGE"),
    )
    timeout_seconds: int = Field(
        default=60,
        validation_alias=AliasChoices("SEARCH_INDEX_TIMEOUT_SECONDS", "SEARCH_INDEX__TIMEOUT_SECONDS"),
    )


class SyncSettings(BaseSettings):
    """Chunking and retry controls for index synchronization."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    firestore_batch_size: int = Field(
        default=450,
        validation_alias=AliasChoices("SYNC_FIRESTORE_BATCH_SIZE", "SYNC__FIRESTORE_BATCH_SIZE"),
    )
    index_batch_size: int = Field(
        default=1000,
        validation_alias=AliasChoices("SYNC_INDEX_BATCH_SIZE", "SYNC__INDEX_BATCH_SIZE"),
    )
    index_max_attempts: int = Field(
        default=3,
        validation_alias=AliasChoices("SYNC_INDEX_MAX_ATTEMPTS", "SYNC__INDEX_MAX_ATTEMPTS"),
    )
    index_retry_delay_seconds: float = Field(
        default=1.0,
        validation_alias=AliasChoices("SYNC_INDEX_RETRY_DELAY_SECONDS", "SYNC__INDEX_RETRY_DELAY_SECONDS"),
    )

    @field_validator("firestore_batch_size", mode="after")
    @classmethod
    def _clamp_firestore_batch(cls, value: int) -> int:
        return max(1, min(value, FIRESTORE_MAX_BATCH))

    @field_validator("index_batch_size", "index_max_attempts", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="plotcrm",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="plotcrm-sync",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class Settings(BaseSettings):
    """Root settings object; one nested model per subsystem."""

    env: str = Field(
        default_factory=_active_env,
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    search_index: SearchIndexSettings = Field(default_factory=SearchIndexSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="PLOTCRM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        toml_sources = tuple(TomlConfigSettingsSource(settings_cls, path) for path in _config_files())
        return (init_settings, env_settings, dotenv_settings, *toml_sources, file_secret_settings)

    @property
    def log_level(self) -> str:
        return self.runtime.log_level


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return the process-wide settings, loading them on first use."""

    resolved = _active_env(env)
    return Settings(
        _env_file=[str(path) for path in _dotenv_files(resolved)],
        _env_file_encoding="utf-8",
        env=resolved,
        config_files=_config_files(),
    )


def reload_settings(env: str | None = None) -> Settings:
    """Drop the cached settings and load them again (tests, config edits)."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "ENV_VAR_NAME",
    "FIRESTORE_MAX_BATCH",
    "PROJECT_ROOT",
    "Settings",
    "get_settings",
    "reload_settings",
]
