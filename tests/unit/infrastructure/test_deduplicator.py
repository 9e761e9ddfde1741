"""Unit tests for Deduplicator."""

from __future__ import annotations

from switcharr.domain.entities.sources import SourceCandidate
from switcharr.infrastructure.selection.deduplicator import Deduplicator


def _c(url: str | None, priority: int | None = None, name: str = "") -> SourceCandidate:
    return SourceCandidate(source={"name": name}, episode_url=url, priority=priority, name=name)


class TestDeduplicate:
    def test_equivalent_urls_collapse_to_one(self) -> None:
        candidates = [
            _c("http://cdn.example.com/ep1.m3u8?t=1", name="a"),
            _c("https://cdn.example.com/ep1.m3u8", name="b"),
            _c("https://other.example.org/ep1.m3u8", name="c"),
        ]
        kept = Deduplicator().deduplicate(candidates)

        assert [c.name for c in kept] == ["a", "c"]

    def test_higher_priority_wins(self) -> None:
        candidates = [
            _c("https://cdn.example.com/ep1", priority=10, name="low"),
            _c("https://cdn.example.com/ep1/", priority=90, name="high"),
        ]
        kept = Deduplicator().deduplicate(candidates)

        assert [c.name for c in kept] == ["high"]

    def test_tie_keeps_first_seen(self) -> None:
        candidates = [
            _c("https://cdn.example.com/ep1", priority=50, name="first"),
            _c("https://cdn.example.com/ep1", priority=50, name="second"),
        ]
        kept = Deduplicator().deduplicate(candidates)

        assert [c.name for c in kept] == ["first"]

    def test_survivor_keeps_group_position(self) -> None:
        candidates = [
            _c("https://a.example.com/x", name="a1"),
            _c("https://b.example.com/x", name="b"),
            _c("https://a.example.com/x", priority=5, name="a2"),
        ]
        kept = Deduplicator().deduplicate(candidates)

        assert [c.name for c in kept] == ["a2", "b"]

    def test_advanced_collapses_same_base_domain(self) -> None:
        candidates = [
            _c("https://s1.cdn.example.com/x", name="s1"),
            _c("https://s2.cdn.example.com/y", priority=3, name="s2"),
            _c("https://mirror.example.org/x", name="m"),
        ]
        kept = Deduplicator(advanced=True).deduplicate(candidates)

        assert [c.name for c in kept] == ["s2", "m"]

    def test_advanced_never_groups_unparseable(self) -> None:
        candidates = [_c("garbage one", name="g1"), _c("garbage two", name="g2")]
        kept = Deduplicator().deduplicate(candidates, advanced=True)

        assert [c.name for c in kept] == ["g1", "g2"]

    def test_empty_input(self) -> None:
        assert Deduplicator().deduplicate([]) == []


class TestDuplicateReporting:
    def test_find_duplicates_only_reports_groups(self) -> None:
        candidates = [
            _c("https://cdn.example.com/ep1"),
            _c("http://cdn.example.com/ep1"),
            _c("https://cdn.example.com/ep2"),
        ]
        groups = Deduplicator().find_duplicates(candidates)

        assert list(groups) == ["https://cdn.example.com/ep1"]
        assert len(groups["https://cdn.example.com/ep1"]) == 2

    def test_stats(self) -> None:
        candidates = [
            _c("https://cdn.example.com/ep1"),
            _c("http://cdn.example.com/ep1"),
            _c("https://cdn.example.com/ep2"),
        ]
        stats = Deduplicator().stats(candidates)

        assert stats.original_count == 3
        assert stats.deduplicated_count == 2
        assert stats.removed_count == 1
        assert stats.duplicate_groups == 1

    def test_is_same_source(self) -> None:
        assert Deduplicator.is_same_source(
            "http://cdn.example.com/a/?cache=0", "https://cdn.example.com/a"
        )
        assert not Deduplicator.is_same_source(
            "https://cdn.example.com/a", "https://cdn.example.com/b"
        )


def test_distinct_hosts_all_survive(candidates: list[SourceCandidate]) -> None:
    kept = Deduplicator().deduplicate(candidates)

    assert [c.name for c in kept] == ["a", "b", "c"]
    assert Deduplicator().stats(candidates).removed_count == 0
