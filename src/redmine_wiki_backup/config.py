"""Configuration helpers for the Redmine wiki backup."""

from __future__ import annotations

import dataclasses
import json
import os
import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, ValidationError

from .errors import ConfigIncomplete, ConfigMissing
from .redmine.client import (
    DEFAULT_MAX_CONCURRENCY,
    BasicAuth,
    DecodeErrorPolicy,
    ServiceConfig,
)


class FetchPolicies(BaseModel):
    """Decode-error policy for each JSON fetch operation.

    The defaults abort the whole run when the project list is unreadable but
    only skip the affected project or page when a wiki index or page is.
    """

    model_config = ConfigDict(populate_by_name=True)

    projects: DecodeErrorPolicy = DecodeErrorPolicy.ABORT
    wiki_index: DecodeErrorPolicy = Field(DecodeErrorPolicy.SKIP, alias="wikiIndex")
    wiki_page: DecodeErrorPolicy = Field(DecodeErrorPolicy.SKIP, alias="wikiPage")


class BackupConfig(BaseModel):
    """Aggregate configuration for a backup run."""

    model_config = ConfigDict(populate_by_name=True)

    redmine_url: HttpUrl = Field(..., alias="redmineUrl", description="Base URL of the Redmine server")
    user: Optional[str] = Field(None, description="Basic-auth user name")
    password: Optional[str] = Field(None, description="Basic-auth password")
    api_key: Optional[str] = Field(None, alias="apiKey", description="Redmine REST API key")
    output_dir: Optional[Path] = Field(
        None, alias="outputDir", description="Backup root, defaults to the working directory"
    )
    insecure: bool = Field(False, description="Skip TLS certificate validation")
    max_concurrency: int = Field(
        DEFAULT_MAX_CONCURRENCY,
        ge=1,
        alias="maxConcurrency",
        description="Upper bound on in-flight requests",
    )
    timeout: Optional[float] = Field(None, gt=0, description="Per-request timeout in seconds")
    frontmatter: bool = Field(False, description="Prefix page files with YAML front matter")
    on_decode_error: FetchPolicies = Field(default_factory=FetchPolicies, alias="onDecodeError")

    @property
    def base_url(self) -> str:
        return str(self.redmine_url).rstrip("/")

    def resolved_output_dir(self) -> Path:
        return (self.output_dir or Path.cwd()).expanduser().resolve()

    def service_config(self) -> ServiceConfig:
        auth = BasicAuth(self.user, self.password) if self.user and self.password else None
        return ServiceConfig(
            base_url=self.base_url,
            auth=auth,
            api_key=self.api_key,
            verify_tls=not self.insecure,
            timeout=self.timeout,
            max_concurrency=self.max_concurrency,
        )


ENV_PREFIX = "REDMINE"
CONFIG_FILE = "config.json"
DEFAULT_CONFIG_PATHS = (
    Path.cwd() / CONFIG_FILE,
    Path.cwd() / "redmine-wiki-backup.toml",
    Path.home() / ".config" / "redmine-wiki-backup" / "config.toml",
)
_ENV_KEYS = {
    "URL": "redmine_url",
    "USER": "user",
    "PASSWORD": "password",
    "API_KEY": "api_key",
    "OUTPUT_DIR": "output_dir",
    "INSECURE": "insecure",
}
_URL_KEYS = ("redmineUrl", "redmine_url")


@dataclasses.dataclass
class ConfigSource:
    """Raw configuration data and where it came from."""

    data: dict
    path: Optional[Path]


def _load_from_env() -> dict[str, object]:
    """Return a dictionary with configuration values extracted from environment variables."""

    env_data: dict[str, object] = {}
    for name, key in _ENV_KEYS.items():
        value = os.getenv(f"{ENV_PREFIX}_{name}")
        if value:
            env_data[key] = value
    return env_data


def _load_file(path: Path) -> Optional[dict]:
    if not path.exists():
        return None
    try:
        if path.suffix == ".json":
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        else:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigMissing(f"Cannot read configuration file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigMissing(f"Configuration file {path} does not hold a mapping")
    return data


def resolve_config(explicit_path: Optional[Path] = None) -> Optional[ConfigSource]:
    """Discover configuration using the first available source.

    The priority order is:
    1. Explicit path provided via CLI argument (it must exist).
    2. ``config.json`` or ``redmine-wiki-backup.toml`` in the working
       directory, then the user's config directory.
    3. Environment variables with the ``REDMINE_`` prefix.
    """

    if explicit_path:
        data = _load_file(explicit_path)
        if data is None:
            raise ConfigMissing(f"Configuration file {explicit_path} does not exist")
        return ConfigSource(data=data, path=explicit_path)

    for path in DEFAULT_CONFIG_PATHS:
        data = _load_file(path)
        if data is not None:
            return ConfigSource(data=data, path=path)

    env_data = _load_from_env()
    if env_data:
        return ConfigSource(data=env_data, path=None)
    return None


def ensure_config(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[dict[str, object]] = None,
) -> BackupConfig:
    """Resolve configuration and apply explicit CLI overrides on top of it."""

    source = resolve_config(config_path)
    data: dict[str, object] = dict(source.data) if source else {}
    cli_values = {key: value for key, value in (overrides or {}).items() if value is not None}

    if source is None and not cli_values:
        raise ConfigMissing(
            f"No configuration found. Create {CONFIG_FILE}, pass --config or set {ENV_PREFIX}_URL."
        )

    for key, value in cli_values.items():
        # aliases take precedence during validation, drop them so the override wins
        alias = BackupConfig.model_fields[key].alias
        if alias:
            data.pop(alias, None)
        data[key] = value

    if not any(data.get(key) for key in _URL_KEYS):
        where = source.path if source and source.path else "the configuration"
        raise ConfigIncomplete(f"Cannot find the Redmine URL (redmineUrl) in {where}.")

    try:
        return BackupConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigMissing(f"Invalid configuration: {exc}") from exc
