# File: tests/test_config.py
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from aeo_scout.config import EngineSettings, ProjectConfig, RunType, load_config


def write_file(tmp_path: Path, content: str, suffix: str) -> Path:
    path = tmp_path / f"config{suffix}"
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    "content,suffix,expect_exc",
    [
        ("base_url: http://example.com\nrun_type: sample", ".yaml", None),
        (json.dumps({"base_url": "http://example.com", "run_type": "sample"}), ".json", None),
        ("{}", ".yaml", ValidationError),
        ("base_url: [unclosed", ".yml", ValueError),
        ("- a\n- b", ".yaml", TypeError),
        ("{nope", ".json", ValueError),
        ("base_url = 'x'", ".toml", ValueError),
        ("base_url: http://example.com\nwordlists: {}", ".yaml", ValidationError),
    ],
)
def test_load_config_variants(tmp_path, content, suffix, expect_exc):
    cfg_path = write_file(tmp_path, content, suffix)
    if expect_exc:
        with pytest.raises(expect_exc):
            load_config(cfg_path)
    else:
        cfg = load_config(cfg_path)
        assert isinstance(cfg, ProjectConfig)
        assert cfg.base_url == "http://example.com/"
        assert cfg.run_type is RunType.SAMPLE


def test_load_config_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_defaults():
    cfg = ProjectConfig(base_url="https://Example.com:443/")
    assert cfg.base_url == "https://example.com/"
    assert cfg.run_type is RunType.FULL
    assert cfg.depth_limit == 3
    assert cfg.sample_size == 50
    assert cfg.max_pages == 1000
    assert cfg.user_agent == "AEO-Platform-Bot/1.0"
    assert cfg.use_browser is True
    assert cfg.ai_scoring is False
    assert cfg.token_limit is None


@pytest.mark.parametrize(
    "run_type,follows,cap",
    [
        (RunType.FULL, True, 1000),
        (RunType.SAMPLE, True, 50),
        (RunType.SITEMAP_ONLY, False, 1000),
        (RunType.DELTA, False, 1000),
        (RunType.MANUAL, False, 1000),
    ],
)
def test_run_type_behaviour(run_type, follows, cap):
    cfg = ProjectConfig(base_url="https://example.com", run_type=run_type)
    assert cfg.follows_links is follows
    assert cfg.page_cap == cap


def test_sample_cap_respects_max_pages():
    cfg = ProjectConfig(base_url="https://example.com", run_type="sample", sample_size=200, max_pages=20)
    assert cfg.page_cap == 20


def test_manual_urls_are_normalized():
    cfg = ProjectConfig(
        base_url="https://example.com",
        run_type="manual",
        urls=["https://EXAMPLE.com/a/", "https://example.com/b?utm_source=x"],
    )
    assert cfg.urls == ("https://example.com/a", "https://example.com/b")


def test_urls_only_for_manual_runs():
    with pytest.raises(ValidationError, match="manual"):
        ProjectConfig(base_url="https://example.com", urls=["https://example.com/a"])


def test_naive_modified_after_is_utc():
    cfg = ProjectConfig(base_url="https://example.com", run_type="delta", modified_after=datetime(2024, 1, 1))
    assert cfg.modified_after == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "field,value",
    [
        ("base_url", "ftp://example.com"),
        ("base_url", "not a url"),
        ("concurrency", 0),
        ("max_pages", 0),
        ("min_priority", 1.5),
        ("token_limit", 0),
        ("run_type", "weekly"),
        ("user_agent", ""),
    ],
)
def test_invalid_values(field, value):
    values = {"base_url": "https://example.com", field: value}
    with pytest.raises((ValidationError, ValueError)):
        ProjectConfig(**values)


def test_config_is_frozen():
    cfg = ProjectConfig(base_url="https://example.com")
    with pytest.raises(ValidationError):
        cfg.max_pages = 5


def test_engine_settings_from_env():
    settings = EngineSettings.from_env(
        {
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_MODEL": "gpt-4o",
            "AEO_LLM_TIMEOUT": "12.5",
            "AEO_ROBOTS_TTL": "60",
            "AEO_TOKEN_THRESHOLD": "500",
            "AEO_RUBRIC_PATH": "  ",
        }
    )
    assert settings.openai_api_key == "sk-test"
    assert settings.openai_model == "gpt-4o"
    assert settings.llm_timeout == 12.5
    assert settings.robots_ttl == 60
    assert settings.token_threshold == 500
    assert settings.rubric_path is None
    assert settings.ai_cache_ttl is None


def test_engine_settings_defaults():
    settings = EngineSettings.from_env({})
    assert settings.openai_api_key is None
    assert settings.openai_model == "gpt-4o-mini"
    assert settings.robots_ttl == 3600
    with pytest.raises(ValidationError):
        EngineSettings.from_env({"AEO_LLM_CONCURRENCY": "0"})
