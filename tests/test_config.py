from pathlib import Path

import pytest

from model_ingest.config import IngestConfig, load_config
from model_ingest.errors import ConfigError


ENV_VARS = (
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "ANTHROPIC_MODEL",
    "ANTHROPIC_MAX_TOKENS",
    "RECOMMENDATION_BASE_URL",
    "USE_CLAUDE_BASIC",
    "USE_CLAUDE_JOB_TYPES",
    "USE_ADVANCED_VISION",
    "INGEST_BATCH_SIZE",
    "INGEST_SAMPLE_SIZE",
    "INGEST_PERSISTENCE",
    "INGEST_DB_PATH",
    "INGEST_AUTO_ENRICH",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        # register every name so values loaded from .env files are undone too
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    env_file = tmp_path / ".env"
    env_file.write_text("", encoding="utf-8")
    return env_file


def test_defaults(clean_env):
    cfg = load_config(clean_env)
    assert cfg.anthropic_api_key == ""
    assert cfg.persistence == "store"
    assert cfg.batch_size == 50
    assert cfg.update_model_params == {"use_claude_basic": False, "use_claude_job_types": True}
    with pytest.raises(ConfigError):
        cfg.require_proposer()


def test_env_file_and_environment(clean_env, monkeypatch):
    clean_env.write_text("ANTHROPIC_API_KEY=sk-ant-from-file\nINGEST_BATCH_SIZE=10\n", encoding="utf-8")
    monkeypatch.setenv("INGEST_PERSISTENCE", "Remote")
    monkeypatch.setenv("USE_CLAUDE_BASIC", "yes")
    monkeypatch.setenv("INGEST_DB_PATH", "/tmp/x.db")
    monkeypatch.setenv("RECOMMENDATION_BASE_URL", "https://rec.test/")
    cfg = load_config(clean_env)
    assert cfg.anthropic_api_key == "sk-ant-from-file"
    assert cfg.batch_size == 10
    assert cfg.persistence == "remote"
    assert cfg.update_model_params["use_claude_basic"] is True
    assert cfg.db_path == Path("/tmp/x.db")
    assert cfg.recommendation_base_url == "https://rec.test"
    cfg.require_proposer()


@pytest.mark.parametrize(
    "name,value",
    [("INGEST_PERSISTENCE", "cloud"), ("INGEST_BATCH_SIZE", "ten"), ("INGEST_BATCH_SIZE", "0")],
)
def test_invalid_values(clean_env, monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigError):
        load_config(clean_env)


def test_with_overrides_skips_none():
    cfg = IngestConfig(batch_size=5)
    out = cfg.with_overrides(batch_size=None, sample_size=3)
    assert out.batch_size == 5
    assert out.sample_size == 3
    assert cfg.sample_size == 20
