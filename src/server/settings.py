from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Dict

from model_ingest.config import PERSISTENCE_MODES, IngestConfig


logger = logging.getLogger(__name__)

SETTINGS_PATH: Path | None = None


def init_settings(path: Path, seed: Dict | None = None) -> None:
    global SETTINGS_PATH
    SETTINGS_PATH = path
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        save_settings(seed or default_settings())


def default_settings() -> Dict:
    return {
        "batch_size": 50,
        "sample_size": 20,
        "persistence": "store",
        "auto_enrich": False,
        "recommendation_base_url": "",
        # update_model flags
        "use_claude_basic": False,
        "use_claude_job_types": True,
        # update_model_photos flag
        "use_advanced_vision": True,
    }


def settings_from_config(cfg: IngestConfig) -> Dict:
    """First-run settings taken from the environment-derived configuration."""
    return {
        "batch_size": cfg.batch_size,
        "sample_size": cfg.sample_size,
        "persistence": cfg.persistence,
        "auto_enrich": cfg.auto_enrich,
        "recommendation_base_url": cfg.recommendation_base_url,
        "use_claude_basic": bool(cfg.update_model_params.get("use_claude_basic", False)),
        "use_claude_job_types": bool(cfg.update_model_params.get("use_claude_job_types", True)),
        "use_advanced_vision": cfg.use_advanced_vision,
    }


def get_settings() -> Dict:
    assert SETTINGS_PATH is not None
    base = default_settings()
    try:
        data = json.loads(SETTINGS_PATH.read_text())
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read settings from {SETTINGS_PATH}: {e}; using defaults")
        return base
    base.update(data or {})
    return base


def save_settings(data: Dict) -> None:
    assert SETTINGS_PATH is not None
    SETTINGS_PATH.write_text(json.dumps(data, indent=2))


def validate_settings(data: Dict) -> Dict:
    """Merge a partial update over the current settings, rejecting bad values."""
    cur = get_settings()
    for key, value in data.items():
        if key not in cur:
            raise ValueError(f"Unknown setting: {key}")
        cur[key] = value
    if cur["persistence"] not in PERSISTENCE_MODES:
        raise ValueError(f"persistence must be one of {', '.join(PERSISTENCE_MODES)}")
    for key in ("batch_size", "sample_size"):
        if not isinstance(cur[key], int) or isinstance(cur[key], bool) or cur[key] < 1:
            raise ValueError(f"{key} must be a positive integer")
    for key in ("auto_enrich", "use_claude_basic", "use_claude_job_types", "use_advanced_vision"):
        if not isinstance(cur[key], bool):
            raise ValueError(f"{key} must be true or false")
    return cur


def overlay(cfg: IngestConfig, s: Dict) -> IngestConfig:
    """Settings edited from the server take precedence over the environment."""
    return cfg.with_overrides(
        batch_size=s.get("batch_size"),
        sample_size=s.get("sample_size"),
        persistence=s.get("persistence"),
        auto_enrich=s.get("auto_enrich"),
        recommendation_base_url=(s.get("recommendation_base_url") or "").rstrip("/") or None,
        update_model_params={
            "use_claude_basic": bool(s.get("use_claude_basic", False)),
            "use_claude_job_types": bool(s.get("use_claude_job_types", True)),
        },
        use_advanced_vision=s.get("use_advanced_vision"),
    )
