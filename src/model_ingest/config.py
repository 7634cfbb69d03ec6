from __future__ import annotations
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError


PERSISTENCE_MODES = ("store", "remote")


@dataclass(frozen=True)
class IngestConfig:
    # Mapping proposer (Anthropic Messages API)
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_model: str = "claude-3-7-sonnet-latest"
    anthropic_version: str = "2023-06-01"
    proposer_max_tokens: int = 2000
    proposer_timeout: float = 60.0
    proposer_retry_delays: Tuple[float, ...] = (0.8, 1.6, 3.2)

    # Recommendation service
    recommendation_base_url: str = "https://modelrecommendation-d8fdaa3e6179.herokuapp.com"
    recommendation_timeout: float = 120.0
    update_model_params: Dict[str, bool] = field(
        default_factory=lambda: {"use_claude_basic": False, "use_claude_job_types": True}
    )
    use_advanced_vision: bool = True

    # Pipeline sizes
    batch_size: int = 50
    sample_size: int = 20
    proposer_sample_rows: int = 10
    preview_rows: int = 5
    max_failures_reported: int = 100

    persistence: str = "store"
    db_path: Path = Path("data/models.db")
    auto_enrich: bool = False

    def require_proposer(self) -> None:
        if not self.anthropic_api_key:
            raise ConfigError("Server misconfig: ANTHROPIC_API_KEY is not set")

    def with_overrides(self, **kwargs) -> "IngestConfig":
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_config(env_file: Optional[Path] = None) -> IngestConfig:
    """Build the configuration from an optional .env file and the environment."""
    if env_file is not None:
        load_dotenv(dotenv_path=str(env_file), override=False)
    else:
        load_dotenv(override=False)

    d = IngestConfig()
    persistence = (os.getenv("INGEST_PERSISTENCE") or d.persistence).strip().lower()
    if persistence not in PERSISTENCE_MODES:
        raise ConfigError(f"INGEST_PERSISTENCE must be one of {', '.join(PERSISTENCE_MODES)}, got {persistence!r}")

    batch_size = _env_int("INGEST_BATCH_SIZE", d.batch_size)
    if batch_size < 1:
        raise ConfigError("INGEST_BATCH_SIZE must be at least 1")

    return IngestConfig(
        anthropic_api_key=(os.getenv("ANTHROPIC_API_KEY") or "").strip(),
        anthropic_base_url=(os.getenv("ANTHROPIC_BASE_URL") or d.anthropic_base_url).rstrip("/"),
        anthropic_model=os.getenv("ANTHROPIC_MODEL") or d.anthropic_model,
        proposer_max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", d.proposer_max_tokens),
        recommendation_base_url=(os.getenv("RECOMMENDATION_BASE_URL") or d.recommendation_base_url).rstrip("/"),
        update_model_params={
            "use_claude_basic": _env_bool("USE_CLAUDE_BASIC", False),
            "use_claude_job_types": _env_bool("USE_CLAUDE_JOB_TYPES", True),
        },
        use_advanced_vision=_env_bool("USE_ADVANCED_VISION", True),
        batch_size=batch_size,
        sample_size=_env_int("INGEST_SAMPLE_SIZE", d.sample_size),
        persistence=persistence,
        db_path=Path(os.getenv("INGEST_DB_PATH") or d.db_path),
        auto_enrich=_env_bool("INGEST_AUTO_ENRICH", d.auto_enrich),
    )
