"""caselaw_etl.config

YAML configuration for the case importer.

Usage:
    from pathlib import Path
    from caselaw_etl.config import load_import_config

    config = load_import_config(Path("config/caselaw_import.yml"))
    config = config.with_overrides(batch_size=500)
"""

from __future__ import annotations

import dataclasses
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from caselaw_etl.batch import BatchConfig
from caselaw_etl.resolver import DEFAULT_KEY_PRIORITY
from caselaw_etl.store import DIMENSIONS

KNOWN_SECTIONS = frozenset({"batch", "progress", "reference_keys"})

BATCH_KEYS = {
    "size": "batch_size",
    "max_retries": "max_retries",
    "retry_delay_seconds": "retry_delay_seconds",
    "backoff_multiplier": "backoff_multiplier",
    "max_retry_delay_seconds": "max_retry_delay_seconds",
    "jitter_seconds": "jitter_seconds",
}
PROGRESS_KEYS = {
    "every": "progress_every",
    "pacing_delay_seconds": "pacing_delay_seconds",
}


class ConfigValidationError(ValueError):
    """Raised when the import configuration fails validation."""


@dataclass(frozen=True)
class ImportConfig:
    batch: BatchConfig = field(default_factory=BatchConfig)
    progress_every: int = 1000
    pacing_delay_seconds: float = 0.0
    reference_keys: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_KEY_PRIORITY)
    )
    source_hash: str | None = None

    def with_overrides(self, **overrides: Any) -> ImportConfig:
        """Apply CLI overrides; None values leave the configured value alone."""
        batch_changes = {
            k: v for k, v in overrides.items()
            if v is not None and k in BATCH_KEYS.values()
        }
        top_changes = {
            k: v for k, v in overrides.items()
            if v is not None and k in PROGRESS_KEYS.values()
        }
        unknown = set(overrides) - set(BATCH_KEYS.values()) - set(PROGRESS_KEYS.values())
        if unknown:
            raise ConfigValidationError(f"unknown overrides: {sorted(unknown)}")
        try:
            batch = dataclasses.replace(self.batch, **batch_changes)
        except ValueError as exc:
            raise ConfigValidationError(str(exc)) from exc
        updated = dataclasses.replace(self, batch=batch, **top_changes)
        _validate_progress(updated.progress_every, updated.pacing_delay_seconds)
        return updated


def load_import_config(path: Path) -> ImportConfig:
    """Load and validate an ImportConfig from a YAML file.

    Raises:
        ConfigValidationError: If any section or value is invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    config = parse_import_config(data)
    return dataclasses.replace(
        config, source_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest()
    )


def parse_import_config(data: Any) -> ImportConfig:
    if not isinstance(data, dict):
        raise ConfigValidationError("config root must be a mapping")
    unknown = set(data) - KNOWN_SECTIONS
    if unknown:
        raise ConfigValidationError(f"unknown config sections: {sorted(unknown)}")

    batch_data = _section(data, "batch")
    bad = set(batch_data) - set(BATCH_KEYS)
    if bad:
        raise ConfigValidationError(f"unknown batch keys: {sorted(bad)}")
    try:
        batch = BatchConfig(**{
            BATCH_KEYS[k]: (int(v) if k in ("size", "max_retries") else float(v))
            for k, v in batch_data.items()
        })
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"batch: {exc}") from exc

    progress_data = _section(data, "progress")
    bad = set(progress_data) - set(PROGRESS_KEYS)
    if bad:
        raise ConfigValidationError(f"unknown progress keys: {sorted(bad)}")
    try:
        progress_every = int(progress_data.get("every", 1000))
        pacing = float(progress_data.get("pacing_delay_seconds", 0.0))
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"progress: {exc}") from exc
    _validate_progress(progress_every, pacing)

    reference_keys = dict(DEFAULT_KEY_PRIORITY)
    for dim_name, priority in _section(data, "reference_keys").items():
        dimension = DIMENSIONS.get(dim_name)
        if dimension is None:
            raise ConfigValidationError(f"unknown reference dimension: {dim_name!r}")
        if not isinstance(priority, list) or not priority:
            raise ConfigValidationError(
                f"reference_keys.{dim_name} must be a non-empty list"
            )
        invalid = [f for f in priority if f not in dimension.fields]
        if invalid:
            raise ConfigValidationError(
                f"reference_keys.{dim_name}: unknown fields {invalid}; "
                f"allowed {list(dimension.fields)}"
            )
        reference_keys[dim_name] = tuple(priority)

    return ImportConfig(
        batch=batch,
        progress_every=progress_every,
        pacing_delay_seconds=pacing,
        reference_keys=reference_keys,
    )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigValidationError(f"{name} must be a mapping")
    return section


def _validate_progress(progress_every: int, pacing_delay_seconds: float) -> None:
    if progress_every < 1:
        raise ConfigValidationError("progress.every must be >= 1")
    if pacing_delay_seconds < 0:
        raise ConfigValidationError("progress.pacing_delay_seconds must be >= 0")
