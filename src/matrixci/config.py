# config.py
# Environment-driven defaults; CLI flags override them.
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_WORKFLOW = "matrixci_workflow.py"
YAML_WORKFLOWS = (".matrixci.yml", ".matrixci.yaml")

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _int(name: str) -> Optional[int]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


def _float(name: str) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


def _bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


@dataclass(frozen=True)
class Settings:
    max_workers: Optional[int] = None
    step_timeout: Optional[float] = None
    fail_fast: bool = False
    workflow: Optional[str] = None


def load_settings() -> Settings:
    """Read MATRIXCI_* environment variables."""
    return Settings(
        max_workers=_int("MATRIXCI_MAX_WORKERS"),
        step_timeout=_float("MATRIXCI_STEP_TIMEOUT"),
        fail_fast=_bool("MATRIXCI_FAIL_FAST"),
        workflow=os.environ.get("MATRIXCI_WORKFLOW") or None,
    )
