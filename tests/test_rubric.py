# File: tests/test_rubric.py
import json

import pytest
import yaml
from pydantic import ValidationError

from aeo_scout.parser.page_type import PageType
from aeo_scout.scoring.rubric import RubricStore, load_rubric_document

DEFAULT_CRITERIA = [
    "direct_answer",
    "question_coverage",
    "structured_content",
    "content_depth",
    "authority",
    "multimedia_richness",
    "technical_optimization",
    "internal_linking",
]


def rubric_data(version="2.0", emphasized=("clarity",)):
    return {
        "version": version,
        "categories": [
            {
                "name": "Clarity",
                "criteria": [
                    {"name": "clarity", "description": "Clear writing", "scoringGuidance": "0-100"},
                    {
                        "name": "brevity",
                        "description": "No filler",
                        "scoringGuidance": "0-100",
                        "bestPractices": ["Cut adverbs"],
                    },
                ],
            }
        ],
        "pageTypeRubrics": {"blog": {"emphasizedCriteria": list(emphasized)}},
    }


def test_packaged_default_rubric():
    doc = load_rubric_document()
    assert doc.version == "1.0"
    assert [c.name for cat in doc.categories for c in cat.criteria] == DEFAULT_CRITERIA
    assert set(doc.page_type_rubrics) == {t.value for t in PageType}


def test_criteria_for_marks_emphasis():
    store = RubricStore()
    criteria = {c.name: c for c in store.criteria_for(PageType.BLOG)}
    assert list(criteria) == DEFAULT_CRITERIA
    assert {n for n, c in criteria.items() if c.emphasized} == {
        "direct_answer",
        "content_depth",
        "authority",
        "question_coverage",
    }
    assert criteria["authority"].category == "Authority & Trust"
    assert criteria["direct_answer"].to_dict()["scoringGuidance"].startswith("0-40")


def test_unknown_page_type_has_no_emphasis():
    assert not any(c.emphasized for c in RubricStore().criteria_for("landing"))


def test_yaml_and_json_files(tmp_path):
    yml = tmp_path / "rubric.yaml"
    yml.write_text(yaml.safe_dump(rubric_data()), encoding="utf-8")
    js = tmp_path / "rubric.json"
    js.write_text(json.dumps(rubric_data(version=3)), encoding="utf-8")

    assert RubricStore(yml).version == "2.0"
    doc = load_rubric_document(js)
    assert doc.version == "3"
    assert doc.categories[0].criteria[1].best_practices == ("Cut adverbs",)


def test_store_loads_once_until_invalidated(tmp_path):
    path = tmp_path / "rubric.yaml"
    path.write_text(yaml.safe_dump(rubric_data(version="1.1")), encoding="utf-8")
    store = RubricStore(path)
    assert store.version == "1.1"
    assert store.criterion_names() == ["clarity", "brevity"]
    assert store.loads == 1

    path.write_text(yaml.safe_dump(rubric_data(version="1.2")), encoding="utf-8")
    assert store.version == "1.1"
    store.invalidate()
    assert store.version == "1.2"
    assert store.loads == 2


def test_stats():
    stats = RubricStore().stats()
    assert stats["version"] == "1.0"
    assert stats["category_count"] == 4
    assert stats["total_criteria"] == 8
    assert stats["criteria_by_category"]["Content Quality"] == 4


def test_duplicate_criteria_rejected(tmp_path):
    data = rubric_data()
    data["categories"].append(
        {"name": "Again", "criteria": [{"name": "clarity", "description": "x", "scoringGuidance": "y"}]}
    )
    with pytest.raises(ValidationError, match="duplicate criteria"):
        RubricStore(document=None, path=_write(tmp_path, data)).document


def test_unknown_emphasis_rejected(tmp_path):
    with pytest.raises(ValidationError, match="unknown criteria"):
        load_rubric_document(_write(tmp_path, rubric_data(emphasized=("speed",))))


def test_empty_category_rejected(tmp_path):
    data = rubric_data()
    data["categories"][0]["criteria"] = []
    with pytest.raises(ValidationError):
        load_rubric_document(_write(tmp_path, data))


def test_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_rubric_document(tmp_path / "missing.yaml")
    bad = tmp_path / "bad.json"
    bad.write_text("{nope", encoding="utf-8")
    with pytest.raises(ValueError):
        load_rubric_document(bad)
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_rubric_document(listing)


def _write(tmp_path, data):
    path = tmp_path / "rubric.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path
