"""Configuration loading and path resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

_DEFAULT_CONFIG = "config.yaml"
_DEFAULT_BASE_URL = "https://aiphotoappfull.webberapp.shop"


@dataclass
class Settings:
    """Resolved runtime settings.

    Attributes:
        base_url: Backend root URL.
        timeout: Per-request HTTP timeout in seconds.
        poll_interval: Seconds between job status polls.
        max_attempts: Optional cap on status polls; None polls until terminal.
        use_alternate_catalog: Take the catalog from the alternate provider.
        use_alternate_identity: Resolve the external id from the alternate
            identity provider.
        external_id: External identity served by the primary provider.
        alternate_external_id: External identity served by the alternate provider.
        data_dir: Private data directory (credentials, job index, assets).
        index_file: Job index file name inside data_dir.
        assets_dir: Asset subdirectory name inside data_dir.
        allow_lists: Known-good product ids per catalog group.
        primary_paywalls: Static paywalls served by the primary provider.
        alternate_paywalls: Static paywalls served by the alternate provider.
    """
    base_url: str = _DEFAULT_BASE_URL
    timeout: float = 30.0
    poll_interval: float = 2.5
    max_attempts: int | None = None
    use_alternate_catalog: bool = False
    use_alternate_identity: bool = False
    external_id: str = ""
    alternate_external_id: str = ""
    data_dir: Path = Path("data")
    index_file: str = "effect_generations.json"
    assets_dir: str = "EffectGenerations"
    allow_lists: dict[str, list[str]] = field(default_factory=dict)
    primary_paywalls: dict[str, list[str]] = field(default_factory=dict)
    alternate_paywalls: dict[str, list[str]] = field(default_factory=dict)

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / "session.json"


def load_config(config_path: str | Path | None = None) -> dict:
    """Load and return the raw configuration dictionary.

    Args:
        config_path: Path to config.yaml. Defaults to ./config.yaml.

    Raises:
        FileNotFoundError: If the config file does not exist.
    """
    path = Path(config_path or _DEFAULT_CONFIG)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_project_root(config_path: str | Path | None = None) -> Path:
    """Return the directory containing config.yaml."""
    path = Path(config_path or _DEFAULT_CONFIG)
    return path.resolve().parent


def _paywall_map(raw: object, section: str) -> dict[str, list[str]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"'{section}' must be a mapping of group -> product ids")
    return {str(k): [str(p) for p in (v or [])] for k, v in raw.items()}


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load config.yaml and resolve it into Settings.

    Relative storage paths are resolved against the config file's directory.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If a value has the wrong type.
    """
    config = load_config(config_path)
    return settings_from_dict(config, root=get_project_root(config_path))


def settings_from_dict(config: dict, root: Path | None = None) -> Settings:
    """Build Settings from a parsed config dictionary."""
    api = config.get("api", {}) or {}
    polling = config.get("polling", {}) or {}
    features = config.get("features", {}) or {}
    identity = config.get("identity", {}) or {}
    storage = config.get("storage", {}) or {}
    catalog = config.get("catalog", {}) or {}

    try:
        timeout = float(api.get("timeout_seconds", 30.0))
        poll_interval = float(polling.get("interval_seconds", 2.5))
        max_attempts = polling.get("max_attempts")
        max_attempts = int(max_attempts) if max_attempts is not None else None
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid numeric setting: {exc}") from exc

    if poll_interval < 0:
        raise ValueError("polling.interval_seconds must not be negative")
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("polling.max_attempts must be at least 1")

    data_dir = Path(storage.get("data_dir", "data"))
    if not data_dir.is_absolute() and root is not None:
        data_dir = root / data_dir

    return Settings(
        base_url=str(api.get("base_url", _DEFAULT_BASE_URL)).rstrip("/"),
        timeout=timeout,
        poll_interval=poll_interval,
        max_attempts=max_attempts,
        use_alternate_catalog=bool(features.get("use_alternate_catalog", False)),
        use_alternate_identity=bool(features.get("use_alternate_identity", False)),
        external_id=str(identity.get("external_id", "") or ""),
        alternate_external_id=str(identity.get("alternate_external_id", "") or ""),
        data_dir=data_dir,
        index_file=str(storage.get("index_file", "effect_generations.json")),
        assets_dir=str(storage.get("assets_dir", "EffectGenerations")),
        allow_lists=_paywall_map(catalog.get("allow_lists"), "catalog.allow_lists"),
        primary_paywalls=_paywall_map(catalog.get("primary"), "catalog.primary"),
        alternate_paywalls=_paywall_map(catalog.get("alternate"), "catalog.alternate"),
    )
