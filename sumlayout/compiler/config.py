"""Configuration loading (sumlayout.toml or [tool.sumlayout] in pyproject.toml)."""
from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sumlayout.backend.llvm_layout import DEFAULT_TAG_BITS, TAG_BITS
from sumlayout.backend.sizing import DEFAULT_POINTER_SIZE
from sumlayout.internals.errors import ConfigError
from sumlayout.semantics.model import StorageStrategy

CONFIG_NAME = "sumlayout.toml"
PYPROJECT_NAME = "pyproject.toml"

COLOR_MODES = ("auto", "always", "never")
LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass
class SumLayoutConfig:
    strategy: StorageStrategy = StorageStrategy.INLINE_VALUE_TYPES
    pointer_size: int = DEFAULT_POINTER_SIZE
    tag_bits: int = DEFAULT_TAG_BITS
    color: str = "auto"
    log_level: str = "warning"
    source: Optional[Path] = None

    def validate(self) -> None:
        path = str(self.source) if self.source else "<defaults>"
        if self.pointer_size not in (4, 8):
            raise ConfigError("SL4010", path=path, reason=f"pointer_size must be 4 or 8, got {self.pointer_size}")
        if self.tag_bits not in TAG_BITS:
            raise ConfigError("SL4010", path=path,
                              reason=f"tag_bits must be one of {', '.join(map(str, TAG_BITS))}, got {self.tag_bits}")
        if self.color not in COLOR_MODES:
            raise ConfigError("SL4010", path=path, reason=f"color must be auto, always or never, got '{self.color}'")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError("SL4010", path=path, reason=f"unknown log_level '{self.log_level}'")

    @property
    def use_color(self) -> Optional[bool]:
        """None lets the reporter decide from the terminal."""
        return {"always": True, "never": False}.get(self.color)


def find_config(directory: Path | None = None) -> Optional[Path]:
    """sumlayout.toml, else a pyproject.toml with a [tool.sumlayout] table."""
    if directory is None:
        directory = Path.cwd()
    candidate = directory / CONFIG_NAME
    if candidate.exists():
        return candidate
    pyproject = directory / PYPROJECT_NAME
    if pyproject.exists():
        with open(pyproject, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError("SL4010", path=str(pyproject), reason=str(e)) from None
        if "sumlayout" in data.get("tool", {}):
            return pyproject
    return None


def load_config(directory: Path | None = None) -> SumLayoutConfig:
    """Load and validate configuration from the given directory (default: cwd).

    Returns the defaults when no configuration file exists.
    """
    path = find_config(directory)
    if path is None:
        return SumLayoutConfig()
    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError("SL4010", path=str(path), reason=str(e)) from None
    if path.name == PYPROJECT_NAME:
        data = data["tool"]["sumlayout"]
    return _parse_config(data, path)


def load_config_from_string(text: str) -> SumLayoutConfig:
    """Load configuration from a sumlayout.toml-formatted string."""
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError("SL4010", path="<string>", reason=str(e)) from None
    return _parse_config(data, None)


def _parse_config(data: dict, source: Optional[Path]) -> SumLayoutConfig:
    path = str(source) if source else "<string>"
    known = {"strategy", "pointer_size", "tag_bits", "color", "log_level"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError("SL4010", path=path, reason=f"unknown key(s): {', '.join(unknown)}")

    try:
        strategy = StorageStrategy.parse(str(data.get("strategy", StorageStrategy.INLINE_VALUE_TYPES.value)))
    except ValueError as e:
        raise ConfigError("SL4010", path=path, reason=str(e)) from None

    for key in ("pointer_size", "tag_bits"):
        if key in data and (not isinstance(data[key], int) or isinstance(data[key], bool)):
            raise ConfigError("SL4010", path=path, reason=f"{key} must be an integer")

    config = SumLayoutConfig(
        strategy=strategy,
        pointer_size=data.get("pointer_size", DEFAULT_POINTER_SIZE),
        tag_bits=data.get("tag_bits", DEFAULT_TAG_BITS),
        color=str(data.get("color", "auto")).lower(),
        log_level=str(data.get("log_level", "warning")).lower(),
        source=source,
    )
    config.validate()
    return config
