"""Tuning knobs for resolution and reformation, with JSON and env loading."""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from listorder.io_utils import load_json, save_json
from listorder.reformer import DEFAULT_POSITION_INCREMENT, DEFAULT_REFORMATION_THRESHOLD
from listorder.resolver import DEFAULT_MAX_ATTEMPTS

ENV_PREFIX = "LISTORDER_"


@dataclass(frozen=True, slots=True)
class ReorderSettings:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    reformation_threshold: float = DEFAULT_REFORMATION_THRESHOLD
    position_increment: float = DEFAULT_POSITION_INCREMENT

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.reformation_threshold < 0:
            raise ValueError(
                f"reformation_threshold must be >= 0, got {self.reformation_threshold}"
            )
        if self.position_increment <= self.reformation_threshold:
            raise ValueError("position_increment must exceed reformation_threshold")


_FIELD_TYPES = {"max_attempts": int, "reformation_threshold": float, "position_increment": float}


def settings_from_dict(d: Mapping[str, Any]) -> ReorderSettings:
    """Build settings from a mapping. Keys starting with ``_`` are ignored."""
    payload = {k: v for k, v in d.items() if not str(k).startswith("_")}
    known = {f.name for f in fields(ReorderSettings)}
    unknown = set(payload) - known
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")
    converted = {k: _FIELD_TYPES[k](v) for k, v in payload.items()}
    return ReorderSettings(**converted)


def settings_to_dict(s: ReorderSettings) -> dict[str, Any]:
    return asdict(s)


def load_settings(path: Path) -> ReorderSettings:
    """Load settings from a JSON object file."""
    payload = load_json(path)
    if not isinstance(payload, dict):
        raise ValueError(f"Settings payload must be a JSON object: {path}")
    return settings_from_dict(payload)


def save_settings(s: ReorderSettings, path: Path) -> None:
    save_json(settings_to_dict(s), path)


def settings_from_env(
    base: ReorderSettings | None = None,
    environ: Mapping[str, str] | None = None,
) -> ReorderSettings:
    """Override *base* with ``LISTORDER_MAX_ATTEMPTS`` and friends when set."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name, cast in _FIELD_TYPES.items():
        raw = env.get(ENV_PREFIX + name.upper(), "").strip()
        if raw:
            try:
                overrides[name] = cast(raw)
            except ValueError as exc:
                raise ValueError(
                    f"{ENV_PREFIX}{name.upper()} is not a valid {cast.__name__}: {raw!r}"
                ) from exc
    return replace(base or ReorderSettings(), **overrides)
