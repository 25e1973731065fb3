# File: aeo_scout/scoring/rubric.py
"""aeo_scout.scoring.rubric: the versioned rubric document and its store.

The document is loaded once (YAML or JSON), validated with Pydantic and kept
until :meth:`RubricStore.invalidate` is called. Criteria are returned per page
type with ``emphasized`` set from ``pageTypeRubrics``.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import threading
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from aeo_scout.logger import LOGGER_NAME

__all__ = [
    "RubricCriterion",
    "CriterionSpec",
    "CategorySpec",
    "PageTypeRubric",
    "RubricDocument",
    "RubricStore",
    "load_rubric_document",
]

_log = logging.getLogger(LOGGER_NAME)


class CriterionSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    scoring_guidance: str = Field(..., min_length=1, alias="scoringGuidance")
    best_practices: Tuple[str, ...] = Field((), alias="bestPractices")


class CategorySpec(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = Field(..., min_length=1)
    criteria: Tuple[CriterionSpec, ...]

    @field_validator("criteria")
    @classmethod
    def _non_empty(cls, value: Tuple[CriterionSpec, ...]) -> Tuple[CriterionSpec, ...]:
        if not value:
            raise ValueError("category must list at least one criterion")
        return value


class PageTypeRubric(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    emphasized_criteria: Tuple[str, ...] = Field((), alias="emphasizedCriteria")


class RubricDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    version: str = "1.0"
    document_type: Optional[str] = Field(None, alias="documentType")
    categories: Tuple[CategorySpec, ...]
    page_type_rubrics: Dict[str, PageTypeRubric] = Field(default_factory=dict, alias="pageTypeRubrics")

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> str:
        return str(value)

    @model_validator(mode="after")
    def _check_names(self) -> RubricDocument:
        names = [c.name for cat in self.categories for c in cat.criteria]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate criteria: {dupes}")
        for page_type, spec in self.page_type_rubrics.items():
            unknown = set(spec.emphasized_criteria) - set(names)
            if unknown:
                raise ValueError(f"pageTypeRubrics.{page_type} emphasizes unknown criteria {sorted(unknown)}")
        return self


@dataclass(slots=True, frozen=True)
class RubricCriterion:
    name: str
    category: str
    description: str
    scoring_guidance: str
    best_practices: Tuple[str, ...] = ()
    emphasized: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "scoringGuidance": self.scoring_guidance,
            "bestPractices": list(self.best_practices),
            "emphasized": self.emphasized,
        }


def load_rubric_document(path: Union[str, Path, None] = None) -> RubricDocument:
    """Read and validate a rubric file; *None* reads the packaged default."""
    if path is None:
        text = resources.files("aeo_scout.data").joinpath("default_rubric.yaml").read_text(encoding="utf-8")
        return RubricDocument.model_validate(yaml.safe_load(text))

    p = Path(path).expanduser()
    if not p.is_file():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(p))
    text = p.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if p.suffix.lower() == ".json" else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ValueError(f"cannot parse rubric {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"top level of {p} must be a mapping, got {type(data).__name__}")
    return RubricDocument.model_validate(data)


class RubricStore:
    """Loads the rubric lazily and caches it until :meth:`invalidate`."""

    def __init__(self, path: Union[str, Path, None] = None, *, document: Optional[RubricDocument] = None) -> None:
        self.path = path
        self._document = document
        self._lock = threading.Lock()
        self.loads = 0

    @property
    def document(self) -> RubricDocument:
        with self._lock:
            if self._document is None:
                self._document = load_rubric_document(self.path)
                self.loads += 1
                _log.info("Loaded rubric v%s (%s)", self._document.version, self.path or "packaged default")
            return self._document

    @property
    def version(self) -> str:
        return self.document.version

    def invalidate(self) -> None:
        with self._lock:
            self._document = None

    def criteria_for(self, page_type: str) -> List[RubricCriterion]:
        doc = self.document
        key = str(getattr(page_type, "value", page_type))
        spec = doc.page_type_rubrics.get(key)
        emphasized = set(spec.emphasized_criteria) if spec else set()
        return [
            RubricCriterion(
                name=c.name,
                category=cat.name,
                description=c.description,
                scoring_guidance=c.scoring_guidance,
                best_practices=c.best_practices,
                emphasized=c.name in emphasized,
            )
            for cat in doc.categories
            for c in cat.criteria
        ]

    def criterion_names(self) -> List[str]:
        return [c.name for cat in self.document.categories for c in cat.criteria]

    def stats(self) -> Dict[str, Any]:
        doc = self.document
        return {
            "version": doc.version,
            "document_type": doc.document_type,
            "category_count": len(doc.categories),
            "total_criteria": sum(len(cat.criteria) for cat in doc.categories),
            "criteria_by_category": {cat.name: len(cat.criteria) for cat in doc.categories},
            "page_types": sorted(doc.page_type_rubrics),
        }
