from __future__ import annotations

import json
from pathlib import Path

from defectfit.history import (
    HistoryEntry,
    HistoryFilter,
    InMemoryHistoryStore,
    JsonFileHistoryStore,
    entry_from_analysis,
)
from defectfit.pipeline import run_analysis


def _entry(i: int, best: str = "Poisson", accepted: bool = True) -> HistoryEntry:
    return HistoryEntry(
        source="analysis_completed",
        record_count=i,
        total_items=100 * i,
        total_defects=5 * i,
        best_distribution=best,
        hypothesis_accepted=accepted,
        significance_level=0.05,
    )


def test_in_memory_store_drops_oldest_beyond_cap():
    store = InMemoryHistoryStore()
    for i in range(105):
        store.record(_entry(i))
    assert len(store) == 100
    entries = store.query()
    assert entries[0].record_count == 104
    assert entries[-1].record_count == 5


def test_query_filters_and_limits():
    store = InMemoryHistoryStore(max_entries=10)
    store.record(_entry(1, best="Poisson"))
    store.record(_entry(2, best="NegativeBinomial", accepted=False))
    store.record(_entry(3, best="NegativeBinomial"))

    matches = store.query(HistoryFilter(best_distribution="NegativeBinomial"))
    assert [e.record_count for e in matches] == [3, 2]
    rejected = store.query(HistoryFilter(hypothesis_accepted=False))
    assert [e.record_count for e in rejected] == [2]
    assert [e.record_count for e in store.query(HistoryFilter(limit=1))] == [3]


def test_json_store_persists_and_caps(tmp_path: Path) -> None:
    path = tmp_path / "history" / "history.json"
    store = JsonFileHistoryStore(path, max_entries=3)
    for i in range(5):
        store.record(_entry(i))

    reopened = JsonFileHistoryStore(path, max_entries=3)
    assert [e.record_count for e in reopened.query()] == [4, 3, 2]
    assert len(json.loads(path.read_text())) == 3


def test_json_store_survives_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("{not json")
    store = JsonFileHistoryStore(path)
    assert store.query() == []
    store.record(_entry(1))
    assert len(store.query()) == 1


def test_entry_from_analysis(clean_poisson_records, keep_all):
    result = run_analysis(clean_poisson_records, keep_all)
    entry = entry_from_analysis(clean_poisson_records, result, file_name="batches.csv")
    assert entry.record_count == 50
    assert entry.total_items == 5000
    assert entry.total_defects == 251
    assert entry.best_distribution == result.best_distribution.value
    assert entry.hypothesis_accepted is True
    assert entry.file_name == "batches.csv"
