# File: aeo_scout/scoring/weights.py
"""aeo_scout.scoring.weights: EAT point tables loaded from YAML and validated with Pydantic."""

from __future__ import annotations

import errno
import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Dict, Mapping, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

__all__ = [
    "CountPoints",
    "ScaledPoints",
    "FixedPoints",
    "PointSpec",
    "EatWeights",
    "EAT_SIGNALS",
    "PAGE_SPECIFIC_SIGNALS",
    "award",
]

EAT_SIGNALS = frozenset(
    {
        "has_author",
        "has_author_bio",
        "has_contact",
        "authority_citations",
        "has_authority_citations",
        "has_references",
        "has_publish_date",
        "has_last_updated",
        "expertise_indicators",
        "trust_signals",
        "page_specific",
    }
)

PAGE_SPECIFIC_SIGNALS = frozenset(
    {
        "navigation",
        "value_proposition",
        "comprehensive_footer",
        "company_background",
        "mission_statement",
        "team_photos",
        "phone_number",
        "email_address",
        "contact_form",
        "physical_address",
        "pricing_info",
        "testimonials",
        "guarantee",
        "editorial_content",
        "question_headings",
        "search",
        "standard_page",
    }
)


class CountPoints(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    per: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    min_count: int = Field(0, ge=0)


class ScaledPoints(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    factor: float = Field(..., ge=0)
    max: float = Field(..., ge=0)


class FixedPoints(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fixed: float = Field(..., ge=0)


PointSpec = Union[float, CountPoints, ScaledPoints, FixedPoints]


def award(spec: PointSpec, value: Union[bool, int, float]) -> float:
    """Points earned for *value* under *spec*."""
    if isinstance(spec, FixedPoints):
        return spec.fixed
    if isinstance(spec, CountPoints):
        count = float(value)
        if count <= 0 or count < spec.min_count:
            return 0.0
        return min(spec.max, count * spec.per)
    if isinstance(spec, ScaledPoints):
        return min(spec.max, float(value) * spec.factor)
    return float(spec) if value else 0.0


class EatWeights(BaseModel):
    """Per-page-type EAT tables plus the page-specific factor tables."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    version: str = "1.0"
    default_table: str = "generic"
    aliases: Dict[str, str] = Field(default_factory=dict)
    tables: Dict[str, Dict[str, PointSpec]]
    page_specific: Dict[str, Dict[str, PointSpec]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_names(self) -> EatWeights:
        if self.default_table not in self.tables:
            raise ValueError(f"default_table {self.default_table!r} is not defined")
        for alias, target in self.aliases.items():
            if target not in self.tables:
                raise ValueError(f"alias {alias!r} points to unknown table {target!r}")
        for name, table in self.tables.items():
            unknown = set(table) - EAT_SIGNALS
            if unknown:
                raise ValueError(f"table {name!r}: unknown signals {sorted(unknown)}")
        for name, table in self.page_specific.items():
            unknown = set(table) - PAGE_SPECIFIC_SIGNALS
            if unknown:
                raise ValueError(f"page_specific {name!r}: unknown factors {sorted(unknown)}")
        return self

    def table_name(self, page_type: str) -> str:
        """Resolve a page type to the table that scores it."""
        key = str(getattr(page_type, "value", page_type))
        if key in self.tables:
            return key
        return self.aliases.get(key, self.default_table)

    def table_for(self, page_type: str) -> Mapping[str, PointSpec]:
        return self.tables[self.table_name(page_type)]

    def page_specific_for(self, table_name: str) -> Mapping[str, PointSpec]:
        return self.page_specific.get(table_name) or self.page_specific.get(self.default_table, {})

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> EatWeights:
        return cls.model_validate(dict(data))

    @classmethod
    def load(cls, path: Union[str, Path, None] = None) -> EatWeights:
        """Read a weights file; *None* loads the packaged defaults."""
        if path is None:
            return cls.default()
        p = Path(path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(p))
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"invalid YAML in {p}: {exc}") from exc
        if not isinstance(data, dict):
            raise TypeError(f"top level of {p} must be a mapping, got {type(data).__name__}")
        return cls.from_mapping(data)

    @classmethod
    def default(cls) -> EatWeights:
        return _packaged_weights()


@lru_cache(maxsize=1)
def _packaged_weights() -> EatWeights:
    text = resources.files("aeo_scout.data").joinpath("eat_weights.yaml").read_text(encoding="utf-8")
    return EatWeights.from_mapping(yaml.safe_load(text))
