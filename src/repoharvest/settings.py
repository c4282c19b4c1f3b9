"""
Run configuration.

Settings are resolved once at startup from (highest precedence first) explicit
overrides, the optional TOML file, ``HARVEST_*`` environment variables or the
``.env`` file, and finally the legacy variable names used by older ``.env``
files. The resulting object is immutable and handed to every component.
"""
from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from dotenv import dotenv_values
from pydantic import SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CUTOFF_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_SEARCH_ROOTS: List[str] = [".", "src/main/java/com"]

_ENV_PREFIX = "HARVEST_"
_ENV_FILE = ".env"
_CONFIG_ENV_VAR = "HARVEST_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path("repoharvest_settings.toml")
_LEGACY_ENV_MAPPING = {
    "username": "GITHUB_USERNAME",
    "access_token": "GITHUB_ACCESS_TOKEN",
    "cutoff": "BEFORE_DATE",
    "package_filter": "PACKAGE_INFIX",
    "output_root": "MOVING_DIR",
}


class ConfigurationError(RuntimeError):
    """Raised when the run configuration is missing or invalid."""


class HarvestSettings(BaseSettings):
    """Credentials, cutoff and collection options for one run."""

    model_config = SettingsConfigDict(
        env_prefix=_ENV_PREFIX,
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    username: str
    access_token: SecretStr
    cutoff: Optional[datetime] = None
    package_filter: str
    output_root: Path
    repos_file: Path = Path("repos.csv")
    clone_root: Path = Path("./repo")
    manifest_path: Path = Path("TestedPackages.txt")
    search_roots: List[str] = DEFAULT_SEARCH_ROOTS
    max_workers: Optional[int] = None

    @field_validator("cutoff", mode="before")
    @classmethod
    def _parse_cutoff(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            try:
                value = datetime.strptime(text, CUTOFF_FORMAT)
            except ValueError as exc:
                raise ValueError(f"cutoff must use the form YYYY-MM-DD HH:MM:SS, got {text!r}") from exc
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("username", "access_token")
    @classmethod
    def _require_credentials(cls, value: Any) -> Any:
        text = value.get_secret_value() if isinstance(value, SecretStr) else value
        if not text.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("package_filter")
    @classmethod
    def _require_filter(cls, value: str) -> str:
        if not value:
            raise ValueError("package_filter must not be empty")
        return value

    @field_validator("search_roots")
    @classmethod
    def _require_search_roots(cls, value: List[str]) -> List[str]:
        roots = [root.strip() for root in value if root.strip()]
        if not roots:
            raise ValueError("search_roots needs at least one entry")
        return roots

    @field_validator("max_workers")
    @classmethod
    def _positive_workers(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("max_workers must be a positive integer")
        return value

    def describe(self) -> Dict[str, str]:
        """Printable view of the settings with the access token masked."""
        cutoff = "none"
        if self.cutoff is not None:
            cutoff = self.cutoff.astimezone(timezone.utc).strftime(CUTOFF_FORMAT) + " UTC"
        return {
            "username": self.username,
            "access_token": "********" if self.access_token.get_secret_value() else "",
            "cutoff": cutoff,
            "package_filter": self.package_filter,
            "output_root": str(self.output_root),
            "repos_file": str(self.repos_file),
            "clone_root": str(self.clone_root),
            "manifest_path": str(self.manifest_path),
            "search_roots": ", ".join(self.search_roots),
            "max_workers": str(self.max_workers) if self.max_workers else "unbounded",
        }


def _load_toml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the first TOML configuration file that exists."""
    candidates: List[Path] = []
    if path is not None:
        candidates.append(path)
    config_override = os.getenv(_CONFIG_ENV_VAR)
    if config_override:
        candidates.append(Path(config_override))
    candidates.append(_DEFAULT_CONFIG_FILE)

    for candidate in candidates:
        if candidate.is_file():
            with candidate.open("rb") as handle:
                return tomllib.load(handle)
    return {}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _flatten_config(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate grouped TOML sections into HarvestSettings keyword arguments."""
    data: Dict[str, Any] = {}

    credentials = raw.get("credentials", {})
    for key in ("username", "access_token"):
        if key in credentials:
            data[key] = credentials[key]
    if "cutoff" in credentials:
        data["cutoff"] = _blank_to_none(credentials["cutoff"])

    sources = raw.get("sources", {})
    if "repos_file" in sources:
        data["repos_file"] = sources["repos_file"]
    if "clone_root" in sources:
        data["clone_root"] = sources["clone_root"]
    if "max_workers" in sources:
        data["max_workers"] = _blank_to_none(sources["max_workers"])

    collection = raw.get("collection", {})
    for key in ("package_filter", "output_root", "manifest_path", "search_roots"):
        if key in collection:
            data[key] = collection[key]

    return data


def _legacy_environment(env_file: Optional[Path]) -> Dict[str, str]:
    """Values for settings only present under their legacy variable names."""
    sources: Dict[str, Optional[str]] = {}
    if env_file is not None and env_file.is_file():
        sources.update(dotenv_values(env_file))
    sources.update(os.environ)
    names = {key.upper(): value for key, value in sources.items()}

    data: Dict[str, str] = {}
    for field_name, legacy_name in _LEGACY_ENV_MAPPING.items():
        if f"{_ENV_PREFIX}{field_name.upper()}" in names:
            continue
        value = names.get(legacy_name)
        if value is not None:
            data[field_name] = value
    return data


def load_settings(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = Path(_ENV_FILE),
    **overrides: Any,
) -> HarvestSettings:
    """
    Resolve the run configuration.

    ``overrides`` whose value is ``None`` are ignored so CLI options can be
    passed through unconditionally. Raises :class:`ConfigurationError` when a
    required value is missing or malformed.
    """
    data = _legacy_environment(env_file)
    data.update(_flatten_config(_load_toml_config(config_path)))
    data.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return HarvestSettings(_env_file=env_file, **data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
