# File: tests/test_store.py
import pytest
from conftest import ARTICLE_HTML

from aeo_scout.crawler.models import RenderMethod
from aeo_scout.parser.html_parser import calculate_metrics, extract_content
from aeo_scout.scoring.rules import RuleScore
from aeo_scout.store import InMemoryStore, ResultSink, ScoreRecord, SnapshotRecord, new_id
from aeo_scout.utils import content_hash

URL = "https://example.com/blog/coffee"


def snapshot(run_id="run-1", text="body", sid=None):
    extraction = extract_content(ARTICLE_HTML, URL)
    return SnapshotRecord(
        id=sid or new_id(),
        run_id=run_id,
        url=URL,
        status_code=200,
        cleaned_text=text,
        content_hash=content_hash(text),
        extraction=extraction,
        metrics=calculate_metrics(ARTICLE_HTML, extraction, 120, RenderMethod.STATIC),
        page_type="blog",
    )


def test_store_is_a_sink():
    assert isinstance(InMemoryStore(), ResultSink)


def test_latest_content_hash_follows_newest_snapshot():
    store = InMemoryStore()
    assert store.latest_content_hash(URL) is None
    first = snapshot(text="v1")
    second = snapshot(run_id="run-2", text="v2")
    store.emit_snapshot(first)
    store.emit_snapshot(second)
    assert store.latest_content_hash(URL) == content_hash("v2")
    assert store.get_snapshot(first.id) is first
    assert store.snapshots_for_run("run-2") == [second]


def test_snapshots_are_write_once():
    store = InMemoryStore()
    record = snapshot(sid="fixed")
    store.emit_snapshot(record)
    with pytest.raises(ValueError):
        store.emit_snapshot(snapshot(sid="fixed"))


def test_scores_accumulate_per_snapshot():
    store = InMemoryStore()
    record = snapshot()
    store.emit_snapshot(record)
    for overall in (60, 75):
        store.emit_score(
            ScoreRecord(id=new_id(), snapshot_id=record.id, page_type="blog", overall_score=overall,
                        rule_score=RuleScore.zero())
        )
    assert [s.overall_score for s in store.scores_for(record.id)] == [60, 75]
    assert store.scores_for("other") == []


def test_new_id_is_unique():
    assert len({new_id() for _ in range(100)}) == 100
