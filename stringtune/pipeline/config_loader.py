from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import is_dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .config import DEFAULT_PRESET, EngineConfig, resolve_preset

logger = logging.getLogger(__name__)


class UnknownConfigKeyError(ValueError):
    """Raised when a configuration key is not present in the schema."""


def _load_toml(path: str) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def cfg_get(obj: Any, dotted: str, default: Any = None) -> Any:
    """Read a nested config value with dotted syntax, e.g. ``filters.notch_50``."""
    cur = obj
    for part in dotted.split("."):
        if not hasattr(cur, part):
            return default
        cur = getattr(cur, part)
    return cur


def parse_override(text: str) -> Tuple[str, Any]:
    """
    Split ``key=value`` and parse the value as a TOML scalar, so ``true``,
    ``0.2`` and ``"yin"`` get their natural types. Bare words stay strings.
    """
    if "=" not in text:
        raise ValueError(f"Override must look like key=value, got {text!r}")
    key, raw = text.split("=", 1)
    key, raw = key.strip(), raw.strip()
    try:
        value = tomllib.loads(f"v = {raw}")["v"]
    except tomllib.TOMLDecodeError:
        value = raw
    return key, value


class ConfigLoader:
    """
    Strict, provenance-tracking engine config loader.

    Layers, later wins: instrument preset -> TOML file -> dotted overrides.
    Unknown keys raise and every value set by a layer is tagged with its source.
    """

    def __init__(self) -> None:
        self.provenance: Dict[str, str] = {}

    def load(
        self,
        path: Optional[str] = None,
        preset: Optional[str] = None,
        overrides: Optional[Iterable[Tuple[str, Any]]] = None,
        sample_rate: int = 48000,
    ) -> EngineConfig:
        self.provenance = {}

        data: Dict[str, Any] = {}
        if path:
            if not os.path.exists(path):
                raise FileNotFoundError(f"Config file not found: {path}")
            data = _load_toml(path)

        # A preset named in the file is used unless the caller picks one
        preset_name = preset or data.pop("preset", None) or DEFAULT_PRESET
        data.pop("preset", None)
        resolved = resolve_preset(preset_name)
        config = resolved.to_engine_config(sample_rate=sample_rate)
        self.provenance["preset"] = f"preset:{resolved.name}"

        if data:
            self._apply_layer(config, data, f"file:{os.path.basename(path or '')}")

        if overrides:
            self._apply_overrides(config, dict(overrides), "override")

        config.validate()
        logger.debug("Loaded engine config: preset=%s, %d keys set", resolved.name, len(self.provenance))
        return config

    def _set(self, config: EngineConfig, path: str, value: Any, source: str) -> None:
        *parents, leaf = path.split(".")
        target: Any = config
        for depth, part in enumerate(parents):
            if not is_dataclass(target) or not hasattr(target, part):
                raise UnknownConfigKeyError(".".join(parents[: depth + 1]))
            target = getattr(target, part)
        if not is_dataclass(target) or not hasattr(target, leaf):
            raise UnknownConfigKeyError(path)
        if is_dataclass(getattr(target, leaf)):
            raise UnknownConfigKeyError(f"{path} is a section, not a value")
        setattr(target, leaf, value)
        self.provenance[path] = source

    def _apply_overrides(self, config: EngineConfig, data: Dict[str, Any], source: str) -> None:
        for dotted, value in data.items():
            self._set(config, dotted, value, source)

    def _apply_layer(self, config: EngineConfig, data: Dict[str, Any], source: str, prefix: str = "") -> None:
        """Walk a parsed TOML table; sub-tables map onto nested config sections."""
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                section = cfg_get(config, path)
                if not is_dataclass(section):
                    raise UnknownConfigKeyError(path)
                self._apply_layer(config, value, source, prefix=path)
            elif is_dataclass(cfg_get(config, path)):
                raise TypeError(f"Expected mapping at {path}")
            else:
                self._set(config, path, value, source)
