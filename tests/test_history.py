"""Tests for the task history index helpers."""

from taskdeck.persistence.models import (
    HistoryItem,
    parse_history,
    remove_history,
    sorted_history,
    upsert_history,
)


class TestHistoryItem:
    """Tests for HistoryItem serialization."""

    def test_to_dict_uses_camel_case(self):
        item = HistoryItem(id="1", ts=10, task="fix bug", tokens_in=5, tokens_out=7, total_cost=0.25)
        assert item.to_dict() == {
            "id": "1",
            "ts": 10,
            "task": "fix bug",
            "tokensIn": 5,
            "tokensOut": 7,
            "totalCost": 0.25,
        }

    def test_cache_counts_only_when_set(self):
        item = HistoryItem(id="1", ts=10, task="t", cache_writes=3, cache_reads=4)
        data = item.to_dict()
        assert data["cacheWrites"] == 3
        assert data["cacheReads"] == 4

    def test_from_dict_fills_defaults(self):
        item = HistoryItem.from_dict({"id": 123, "ts": 10, "task": "t"})
        assert item.id == "123"
        assert item.tokens_in == 0
        assert item.total_cost == 0.0
        assert item.cache_reads is None


class TestParseHistory:
    """Tests for parse_history."""

    def test_not_a_list(self):
        assert parse_history(None) == []
        assert parse_history({"id": "1"}) == []

    def test_skips_malformed_rows(self):
        raw = [{"id": "1", "ts": 1, "task": "ok"}, "junk", {"ts": 2}, {"id": "3", "ts": "soon"}]
        assert [i.id for i in parse_history(raw)] == ["1"]


class TestSortedHistory:
    """Tests for sorted_history."""

    def test_newest_first(self):
        items = [
            HistoryItem(id="a", ts=1, task="one"),
            HistoryItem(id="c", ts=3, task="three"),
            HistoryItem(id="b", ts=2, task="two"),
        ]
        assert [i.id for i in sorted_history(items)] == ["c", "b", "a"]

    def test_drops_entries_without_ts_or_task(self):
        items = [
            HistoryItem(id="a", ts=0, task="no ts"),
            HistoryItem(id="b", ts=2, task=""),
            HistoryItem(id="c", ts=3, task="kept"),
        ]
        assert [i.id for i in sorted_history(items)] == ["c"]


class TestUpsertRemove:
    """Tests for upsert_history and remove_history."""

    def test_upsert_appends(self):
        items = [HistoryItem(id="a", ts=1, task="one")]
        updated = upsert_history(items, HistoryItem(id="b", ts=2, task="two"))
        assert [i.id for i in updated] == ["a", "b"]
        assert len(items) == 1

    def test_upsert_replaces_in_place(self):
        items = [HistoryItem(id="a", ts=1, task="one"), HistoryItem(id="b", ts=2, task="two")]
        updated = upsert_history(items, HistoryItem(id="a", ts=1, task="one", tokens_in=9))
        assert [i.id for i in updated] == ["a", "b"]
        assert updated[0].tokens_in == 9

    def test_remove(self):
        items = [HistoryItem(id="a", ts=1, task="one"), HistoryItem(id="b", ts=2, task="two")]
        assert [i.id for i in remove_history(items, "a")] == ["b"]
        assert remove_history(items, "zzz") == items
