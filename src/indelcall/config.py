"""Configuration loader for indelcall calling parameters.

Reads ``defaults.yaml`` from the package directory, layers an optional user
YAML file and explicit overrides on top, and exposes the defaults as
module-level constants.

Examples:
    >>> defaults = load_defaults()
    >>> sorted(defaults.keys()) == ['calling', 'mode', 'window']
    True
    >>> load_config(min_coverage=10).min_coverage
    10
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from indelcall.decision import CallThresholds
from indelcall.errors import ConfigError

_PKG_DIR = Path(__file__).parent

OUTPUT_FORMATS = ("bed", "1kg")

# YAML (section, key) -> CallerConfig field
_YAML_KEYS = {
    ("window", "size"): "window_size",
    ("window", "nqs_width"): "nqs_width",
    ("calling", "min_coverage"): "min_coverage",
    ("calling", "min_normal_coverage"): "min_normal_coverage",
    ("calling", "min_fraction"): "min_fraction",
    ("calling", "min_consensus_fraction"): "min_consensus_fraction",
    ("calling", "min_indel_count"): "min_indel_count",
    ("mode", "somatic"): "somatic",
    ("mode", "output_format"): "output_format",
}


@lru_cache(maxsize=1)
def load_defaults() -> dict[str, Any]:
    """Load default parameters from defaults.yaml.

    Returns:
        Parsed YAML dict with ``window``, ``calling`` and ``mode`` keys.

    Examples:
        >>> load_defaults()['window']['size']
        200
    """
    return yaml.safe_load((_PKG_DIR / "defaults.yaml").read_text())


@dataclass(frozen=True)
class CallerConfig:
    """Validated calling parameters for one run."""

    window_size: int
    nqs_width: int
    min_coverage: int
    min_normal_coverage: int
    min_fraction: float
    min_consensus_fraction: float
    min_indel_count: int
    somatic: bool = False
    output_format: str = "bed"

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            raise ConfigError(f"window size must be positive, got {self.window_size}")
        if self.nqs_width < 0:
            raise ConfigError(f"NQS width must not be negative, got {self.nqs_width}")
        if 2 * self.nqs_width >= self.window_size:
            raise ConfigError(
                f"NQS width {self.nqs_width} does not fit into a window of {self.window_size}"
            )
        for name in ("min_coverage", "min_normal_coverage", "min_indel_count"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        for name in ("min_fraction", "min_consensus_fraction"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {getattr(self, name)}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"output format must be one of {', '.join(OUTPUT_FORMATS)}, got {self.output_format!r}"
            )

    @property
    def thresholds(self) -> CallThresholds:
        return CallThresholds(
            min_coverage=self.min_coverage,
            min_fraction=self.min_fraction,
            min_consensus_fraction=self.min_consensus_fraction,
            min_indel_count=self.min_indel_count,
        )

    @property
    def normal_thresholds(self) -> CallThresholds:
        return replace(self.thresholds, min_coverage=self.min_normal_coverage)


def _flatten(data: dict[str, Any], source: str) -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for section, values in data.items():
        if not isinstance(values, dict):
            raise ConfigError(f"{source}: section {section!r} must be a mapping")
        for key, value in values.items():
            name = _YAML_KEYS.get((section, key))
            if name is None:
                raise ConfigError(f"{source}: unknown setting {section}.{key}")
            flat[name] = value
    return flat


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    types = {f.name: f.type for f in fields(CallerConfig)}
    out: dict[str, Any] = {}
    for name, value in values.items():
        kind = types[name]
        try:
            if kind == "bool":
                if not isinstance(value, bool):
                    raise ValueError(value)
                out[name] = value
            elif kind == "int":
                out[name] = int(value)
            elif kind == "float":
                out[name] = float(value)
            else:
                out[name] = str(value)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid value for {name}: {value!r}") from None
    return out


def load_config(path: str | Path | None = None, **overrides: Any) -> CallerConfig:
    """Build a ``CallerConfig`` from defaults, an optional YAML file and overrides.

    Args:
        path: Optional YAML file using the same sections as defaults.yaml.
        **overrides: ``CallerConfig`` field values; None values are ignored.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: For unknown keys or invalid values.
    """
    values = _flatten(load_defaults(), "defaults.yaml")
    if path is not None:
        user = yaml.safe_load(Path(path).read_text()) or {}
        if not isinstance(user, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        values.update(_flatten(user, str(path)))
    known = {f.name for f in fields(CallerConfig)}
    for name, value in overrides.items():
        if name not in known:
            raise ConfigError(f"unknown setting {name}")
        if value is not None:
            values[name] = value
    return CallerConfig(**_coerce(values))


# -- Module-level defaults ---------------------------------------------------
_defaults = load_defaults()

WINDOW_SIZE: int = _defaults["window"]["size"]
NQS_WIDTH: int = _defaults["window"]["nqs_width"]
MIN_COVERAGE: int = _defaults["calling"]["min_coverage"]
MIN_NORMAL_COVERAGE: int = _defaults["calling"]["min_normal_coverage"]
MIN_FRACTION: float = _defaults["calling"]["min_fraction"]
MIN_CONSENSUS_FRACTION: float = _defaults["calling"]["min_consensus_fraction"]
MIN_INDEL_COUNT: int = _defaults["calling"]["min_indel_count"]
