"""
Configuration for foldwise runs.

Sources, lowest precedence first:

  config/default.toml   committed defaults
  config/local.toml     optional, uncommitted; sits beside the main file
  .env                  read into the environment without replacing set vars
  FOLDWISE_* variables  see ``_ENV_OVERRIDES``

``load_config(config_path=None) -> AppConfig`` merges them and validates.
Orchestrators take a ``CVConfig`` for their defaults; an explicit keyword
argument always beats the config value.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

VALID_BACKENDS = frozenset({"loky", "threading", "multiprocessing"})
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ── Sub-config models ─────────────────────────────────────────────────────────


class CVConfig(BaseModel):
    """Defaults for cross-validation runs."""

    model_config = ConfigDict(frozen=True)

    k: int = 10
    reps: int = 1
    level: float = 0.95
    ncores: int = 1
    backend: str = "loky"
    details_max_k: int = 10       # details default on when k <= this
    confint_min_cases: int = 400  # confint default on when n >= this
    seed_max: int = 1_000_000
    strict_seed: bool = False     # raise instead of warn on a seed for LOO

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError(f"level must be in (0.0, 1.0), got {v}.")
        return v

    @field_validator("k")
    @classmethod
    def validate_k(cls, v: int) -> int:
        if v < 2:
            raise ValueError(f"k must be >= 2, got {v}.")
        return v

    @field_validator("reps", "ncores", "seed_max")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be >= 1, got {v}.")
        return v

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in VALID_BACKENDS:
            raise ValueError(
                f"backend must be one of {sorted(VALID_BACKENDS)}, got '{v}'."
            )
        return v


class LoggingConfig(BaseModel):
    """Where log records go and how they look (see ``utils/logging.py``)."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: Optional[str] = None  # stderr only when unset
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def normalise_level(cls, v: str) -> str:
        name = v.strip().upper()
        if name not in LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}, got '{v}'.")
        return name


class AppConfig(BaseModel):
    """Everything ``load_config()`` produces: CV defaults, logging, debug flag."""

    model_config = ConfigDict(frozen=True)

    cv: CVConfig = CVConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

# env var → (table, key, parser); an empty table means a top-level key
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "FOLDWISE_LOG_LEVEL": ("logging", "level", str),
    "FOLDWISE_NCORES": ("cv", "ncores", int),
    "FOLDWISE_BACKEND": ("cv", "backend", str),
    "FOLDWISE_DEBUG": ("", "debug", lambda s: s.strip().lower() in ("1", "true", "yes")),
}


def _project_root() -> Path:
    """Nearest ancestor of this package that holds ``pyproject.toml``."""
    here = Path(__file__).resolve().parent
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").exists():
            return candidate
    return here.parent


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit TOML file. Without one, ``config/default.toml``
            under the project root is used if it exists (it does not in an
            installed wheel, where built-in defaults apply).

    Raises:
        FileNotFoundError: If an explicit ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _project_root()
    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        layers = [config_path, config_path.parent / "local.toml"]
    else:
        config_dir = root / "config"
        layers = [config_dir / "default.toml", config_dir / "local.toml"]

    raw: dict[str, Any] = {}
    for layer in layers:
        if layer.exists():
            raw = _merge(raw, _read_toml(layer))

    return _build_app_config(_with_env(raw, os.environ))


def _read_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _merge(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Table-wise merge; values in ``top`` win, nested tables merge."""
    merged = dict(base)
    for key, value in top.items():
        below = merged.get(key)
        merged[key] = _merge(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return merged


def _with_env(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay the ``FOLDWISE_*`` variables listed in ``_ENV_OVERRIDES``."""
    overrides: dict[str, Any] = {}
    for name, (table, key, parse) in _ENV_OVERRIDES.items():
        value = environ.get(name)
        if not value:
            continue
        target = overrides.setdefault(table, {}) if table else overrides
        target[key] = parse(value)
    return _merge(raw, overrides)


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """``[project] debug`` is the TOML spelling of ``AppConfig.debug``."""
    debug = raw.get("debug", raw.get("project", {}).get("debug", False))
    return AppConfig(
        cv=CVConfig(**raw.get("cv", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=debug,
    )
