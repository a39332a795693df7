"""Layered configuration for :mod:`reindexd`.

Four layers are merged key by key, later layers winning: the packaged
``reindexd.defaults.toml``, the workspace ``reindexd.toml``, recognized
environment variables and CLI flags. The merged mapping is validated into an
:class:`AppConfig`.
"""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
import os
from pathlib import Path
from typing import Any, Literal, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reindexd.resources import get_resource

DistanceName = Literal["cosine", "dot", "euclid", "manhattan"]

_SECTION_CONFIG = ConfigDict(str_strip_whitespace=True, validate_assignment=True)


class DbSettings(BaseModel):
    """Location of the SQLite file holding chunks and build ledgers."""

    model_config = _SECTION_CONFIG

    filename: str = Field(
        default="reindexd.sqlite3",
        description="Relative to the workspace data directory unless absolute.",
    )
    busy_timeout_ms: int = Field(default=5000, ge=0)


class EmbeddingSettings(BaseModel):
    """Provider and model for new builds plus the input length guard."""

    model_config = _SECTION_CONFIG

    provider: str = "tei"
    model: str = "BAAI/bge-small-en-v1.5"
    dim: int | None = Field(
        default=None,
        ge=1,
        description="Vector dimension of ``model``; unset asks the provider.",
    )
    max_chars: int = Field(
        default=1800,
        ge=1,
        description="Texts are clamped to this length before embedding.",
    )
    floor_chars: int = Field(
        default=600,
        ge=1,
        description="Oversized texts are never shrunk below this length.",
    )
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("provider")
    @classmethod
    def _provider_key(cls, value: str) -> str:
        key = value.strip().lower()
        if not key:
            raise ValueError("Embedding provider cannot be blank.")
        return key

    @model_validator(mode="after")
    def _floor_below_max(self) -> "EmbeddingSettings":
        if self.floor_chars > self.max_chars:
            raise ValueError(
                "embeddings.floor_chars must not exceed embeddings.max_chars."
            )
        return self

    def provider_config(self, key: str) -> dict[str, Any]:
        """Return a copy of the ``[embeddings.providers.<key>]`` table."""

        return dict(self.providers.get(key.strip().lower(), {}))


class VectorStoreSettings(BaseModel):
    """Qdrant connection settings."""

    model_config = _SECTION_CONFIG

    url: str = Field(
        default="http://localhost:6333",
        description='Qdrant endpoint; ":memory:" runs an in-process store.',
    )
    api_key: str | None = None
    timeout: int = Field(default=30, ge=1)
    distance: DistanceName = "cosine"

    @field_validator("api_key")
    @classmethod
    def _drop_blank_key(cls, value: str | None) -> str | None:
        return value if value and value.strip() else None

    @field_validator("distance", mode="before")
    @classmethod
    def _distance_lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class BuildSettings(BaseModel):
    """Defaults for ``reindexd build`` commands."""

    model_config = _SECTION_CONFIG

    namespace: str = "default"
    batch_size: int = Field(default=100, ge=1)


class AppConfig(BaseModel):
    """Validated configuration of one workspace."""

    model_config = _SECTION_CONFIG

    workspace: Path = Field(default_factory=lambda: Path.home() / ".reindexd")
    log_level: str = "INFO"
    db: DbSettings = Field(default_factory=DbSettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    build: BuildSettings = Field(default_factory=BuildSettings)

    @field_validator("workspace")
    @classmethod
    def _expand_workspace(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


DEFAULTS_RESOURCE_NAME = "reindexd.defaults.toml"

# Environment variable -> config key path.
_ENV_KEYS: Mapping[str, tuple[str, ...]] = {
    "REINDEXD_WORKSPACE": ("workspace",),
    "REINDEXD_LOG_LEVEL": ("log_level",),
    "REINDEXD_EMBEDDING_PROVIDER": ("embeddings", "provider"),
    "REINDEXD_EMBEDDING_MODEL": ("embeddings", "model"),
    "TEI_URL": ("embeddings", "providers", "tei", "url"),
    "QDRANT_URL": ("vector_store", "url"),
    "QDRANT_API_KEY": ("vector_store", "api_key"),
}

_RENDER_HEADER = (
    "Generated by reindexd init",
    "Precedence: CLI flags > env vars > reindexd.toml > packaged defaults",
    "Secrets stay in the environment: QDRANT_API_KEY, OPENAI_API_KEY",
    "Other env overrides: REINDEXD_WORKSPACE, REINDEXD_LOG_LEVEL, TEI_URL, QDRANT_URL",
)


def read_packaged_defaults_text() -> str:
    return get_resource(DEFAULTS_RESOURCE_NAME).read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Parse the packaged defaults.

    Example:
        >>> load_packaged_defaults()["embeddings"]["max_chars"]
        1800
    """

    return tomllib.loads(read_packaged_defaults_text())


def _merge(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            current = merged.get(key)
            if isinstance(current, MappingABC) and isinstance(value, MappingABC):
                merged[key] = _merge(current, value)
            else:
                merged[key] = value
    return merged


def env_config_from_environ(
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build a config layer from the recognized environment variables.

    Blank values are ignored.

    Example:
        >>> env_config_from_environ({"QDRANT_URL": "http://qdrant:6333"})
        {'vector_store': {'url': 'http://qdrant:6333'}}
    """

    source = os.environ if environ is None else environ
    layer: dict[str, Any] = {}
    for name, (*parents, leaf) in _ENV_KEYS.items():
        value = (source.get(name) or "").strip()
        if not value:
            continue
        table = layer
        for part in parents:
            table = table.setdefault(part, {})
        table[leaf] = value
    return layer


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Merge the layers lowest-precedence first and validate the result.

    Raises:
        pydantic.ValidationError: If the merged values are invalid.
    """

    return AppConfig(**_merge(defaults, user_config, env_config, cli_overrides))


def load_workspace_config(
    config_file: Path,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load a workspace's effective configuration.

    A missing or empty ``config_file`` contributes nothing.

    Raises:
        tomllib.TOMLDecodeError: If ``config_file`` is not valid TOML.
    """

    user_config = None
    if config_file.exists():
        user_config = tomllib.loads(config_file.read_text(encoding="utf-8"))
    return load_config(
        defaults=load_packaged_defaults(),
        user_config=user_config,
        env_config=env_config_from_environ(environ),
        cli_overrides=cli_overrides,
    )


def render_user_config(config: AppConfig) -> str:
    """Serialize ``config`` as a commented ``reindexd.toml``.

    ``vector_store.api_key`` is never written.
    """

    values = config.model_dump(
        mode="json",
        exclude_none=True,
        exclude={"vector_store": {"api_key"}},
    )
    document = tomlkit.document()
    for line in _RENDER_HEADER:
        document.add(tomlkit.comment(line))
    document.add(tomlkit.nl())
    for key, value in values.items():
        document[key] = value
    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "BuildSettings",
    "DbSettings",
    "DEFAULTS_RESOURCE_NAME",
    "EmbeddingSettings",
    "VectorStoreSettings",
    "env_config_from_environ",
    "load_config",
    "load_packaged_defaults",
    "load_workspace_config",
    "read_packaged_defaults_text",
    "render_user_config",
]
