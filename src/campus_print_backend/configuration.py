from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

# Load environment variables from .env file before any oc.env interpolation
load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:4]]

CONFIG_ENV_VAR = "CAMPUS_PRINT_CONFIG"


def _locate_config() -> Path:
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit)
    path = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
    if path is None:  # pragma: no cover - fail fast in broken installs
        raise FileNotFoundError("Default config.yaml could not be located; set CAMPUS_PRINT_CONFIG.")
    return path


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    config_path = _locate_config()
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found at {config_path}")
    return OmegaConf.load(config_path)


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime configuration.

    The packaged defaults are merged with ``overrides`` (nested dicts or
    dotlist-style keys are both accepted by OmegaConf) and resolved, so
    environment interpolations are evaluated at call time.
    """
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)

    merged = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))
    OmegaConf.resolve(merged)
    return merged


def configure_logging(settings: DictConfig) -> None:
    level = str(settings.logging.level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)-8s] %(name)s - %(message)s",
    )
