# === FILE: aeo_scout/config.py ===
"""
Модуль для загрузки и валидации конфигурации AEO Scout.

* :class:`ProjectConfig` – параметры одного запуска обхода (crawl run).
* :class:`EngineSettings` – настройки процесса: ключ LLM, TTL кэшей, пути к
  рубрике и таблицам EAT. Читаются из переменных окружения.

Используется Pydantic для описания схемы и проверки данных.
"""
from __future__ import annotations

import enum
import errno
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from aeo_scout.crawler.canonicalizer import normalize

__all__ = ["RunType", "ProjectConfig", "EngineSettings", "load_config"]


class RunType(str, enum.Enum):
    FULL = "full"
    SITEMAP_ONLY = "sitemap_only"
    SAMPLE = "sample"
    DELTA = "delta"
    MANUAL = "manual"


class ProjectConfig(BaseModel):
    """Конфигурация для одного запуска обхода."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = Field(..., description="Корневой URL проекта.")
    run_type: RunType = Field(RunType.FULL, description="Тип запуска.")
    depth_limit: int = Field(3, ge=0, description="Максимальная глубина обхода ссылок.")
    sample_size: int = Field(50, ge=1, description="Число страниц для запуска sample.")
    token_limit: Optional[int] = Field(None, ge=1, description="Бюджет токенов LLM на запуск.")
    excluded_patterns: Tuple[str, ...] = Field((), description="Подстроки или glob-шаблоны исключаемых URL.")
    user_agent: str = Field("AEO-Platform-Bot/1.0", min_length=1, description="Заявленный User-Agent.")

    urls: Tuple[str, ...] = Field((), description="Явный список URL для запуска manual.")
    modified_after: Optional[datetime] = Field(None, description="Граница lastmod для запуска delta.")
    min_priority: Optional[float] = Field(None, ge=0, le=1, description="Минимальный priority в sitemap.")
    max_pages: int = Field(1000, ge=1, description="Жесткий лимит по числу страниц.")
    concurrency: int = Field(4, ge=1, le=64, description="Число одновременных воркеров.")
    timeout: float = Field(30.0, gt=0, description="Таймаут на один запрос (секунд).")
    retry_times: int = Field(2, ge=0, description="Число повторных попыток при 5xx/429.")
    min_crawl_delay: float = Field(0.0, ge=0, description="Нижняя граница задержки между запросами к домену.")
    use_browser: bool = Field(True, description="Рендерить страницы headless-браузером.")
    ai_scoring: bool = Field(False, description="Запрашивать AI-оценку по рубрике.")
    keep_raw_html: bool = Field(False, description="Сохранять исходный HTML в снимках.")
    sitemap_max_depth: int = Field(5, ge=1, description="Глубина рекурсии индексов sitemap.")

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, v: Any) -> Any:
        if isinstance(v, str):
            return normalize(v.strip()).url
        return v

    @field_validator("urls", mode="before")
    @classmethod
    def _normalize_urls(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return tuple(normalize(str(u).strip()).url for u in v)
        return v

    @field_validator("modified_after")
    @classmethod
    def _aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _check_run_type(self) -> ProjectConfig:
        if self.urls and self.run_type is not RunType.MANUAL:
            raise ValueError("urls can only be given for run_type 'manual'")
        return self

    @property
    def follows_links(self) -> bool:
        return self.run_type in (RunType.FULL, RunType.SAMPLE)

    @property
    def page_cap(self) -> int:
        if self.run_type is RunType.SAMPLE:
            return min(self.sample_size, self.max_pages)
        return self.max_pages


def _env(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    return value.strip() if value and value.strip() else None


class EngineSettings(BaseModel):
    """Настройки процесса, общие для всех запусков."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout: float = Field(60.0, gt=0)
    llm_concurrency: int = Field(2, ge=1)
    robots_ttl: float = Field(3600.0, gt=0)
    ai_cache_ttl: Optional[float] = Field(None, gt=0)
    rubric_path: Optional[Path] = None
    eat_weights_path: Optional[Path] = None
    token_threshold: int = Field(1000, ge=1)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> EngineSettings:
        """Собирает настройки из ``OPENAI_*`` и ``AEO_*`` переменных окружения."""
        env = os.environ if env is None else env
        names = {
            "openai_api_key": "OPENAI_API_KEY",
            "openai_model": "OPENAI_MODEL",
            "llm_timeout": "AEO_LLM_TIMEOUT",
            "llm_concurrency": "AEO_LLM_CONCURRENCY",
            "robots_ttl": "AEO_ROBOTS_TTL",
            "ai_cache_ttl": "AEO_AI_CACHE_TTL",
            "rubric_path": "AEO_RUBRIC_PATH",
            "eat_weights_path": "AEO_EAT_WEIGHTS_PATH",
            "token_threshold": "AEO_TOKEN_THRESHOLD",
        }
        data = {field: _env(env, var) for field, var in names.items()}
        return cls(**{k: v for k, v in data.items() if v is not None})


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(path: Union[str, Path]) -> ProjectConfig:
    """
    Читает YAML или JSON и возвращает проверенный объект ProjectConfig.
    При отсутствии файла бросает FileNotFoundError.
    """
    path_obj = Path(path).expanduser().resolve()
    if not path_obj.is_file():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    return ProjectConfig(**data)
