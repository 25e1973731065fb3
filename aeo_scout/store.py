# File: aeo_scout/store.py
"""aeo_scout.store: outbound persistence records and the sink protocol.

The crawl core only ever *emits* records: a snapshot is never changed once
stored, a rescore produces a new score record for the same snapshot.
:class:`InMemoryStore` is the reference sink used by the CLI and the tests.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from aeo_scout.parser.html_parser import ContentExtraction, PageMetrics
from aeo_scout.scoring.rules import RuleScore

__all__ = ["SnapshotRecord", "ScoreRecord", "ResultSink", "InMemoryStore", "new_id"]


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True, frozen=True)
class SnapshotRecord:
    id: str
    run_id: str
    url: str
    status_code: int
    cleaned_text: str
    content_hash: str
    extraction: ContentExtraction
    metrics: PageMetrics
    page_type: str = "resource"
    raw_html: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ScoreRecord:
    id: str
    snapshot_id: str
    page_type: str
    overall_score: int
    rule_score: RuleScore
    criteria_scores: Mapping[str, float] = field(default_factory=dict)
    explanations: Mapping[str, str] = field(default_factory=dict)
    recommendations: Tuple[Mapping[str, Any], ...] = ()
    cache_key: Optional[str] = None
    tokens_used: int = 0
    ai_score_unavailable: bool = False


@runtime_checkable
class ResultSink(Protocol):
    def emit_snapshot(self, record: SnapshotRecord) -> None: ...

    def emit_score(self, record: ScoreRecord) -> None: ...

    def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]: ...

    def latest_content_hash(self, url: str) -> Optional[str]: ...


class InMemoryStore:
    """Thread-safe in-process sink; snapshots are write-once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.snapshots: Dict[str, SnapshotRecord] = {}
        self.scores: List[ScoreRecord] = []
        self._latest_by_url: Dict[str, str] = {}

    def emit_snapshot(self, record: SnapshotRecord) -> None:
        with self._lock:
            if record.id in self.snapshots:
                raise ValueError(f"snapshot {record.id} already emitted")
            self.snapshots[record.id] = record
            self._latest_by_url[record.url] = record.id

    def emit_score(self, record: ScoreRecord) -> None:
        with self._lock:
            self.scores.append(record)

    def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]:
        with self._lock:
            return self.snapshots.get(snapshot_id)

    def latest_content_hash(self, url: str) -> Optional[str]:
        with self._lock:
            sid = self._latest_by_url.get(url)
            return self.snapshots[sid].content_hash if sid else None

    def scores_for(self, snapshot_id: str) -> List[ScoreRecord]:
        with self._lock:
            return [s for s in self.scores if s.snapshot_id == snapshot_id]

    def snapshots_for_run(self, run_id: str) -> List[SnapshotRecord]:
        with self._lock:
            return [s for s in self.snapshots.values() if s.run_id == run_id]
