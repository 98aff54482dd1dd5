"""Tests for alfred_memory.core.types: Pydantic models."""

import pytest
from pydantic import ValidationError

from alfred_memory.core.types import (
    HybridSearchResult,
    MemoryRecord,
    SearchFilter,
    SearchOptions,
    dedupe_tags,
)


class TestMemoryRecord:
    def test_defaults(self):
        record = MemoryRecord(content="hello")
        assert record.id
        assert record.embedding == []
        assert record.metadata == {}
        assert record.agent_id is None
        assert record.created_at <= record.updated_at

    def test_unique_ids(self):
        assert MemoryRecord(content="a").id != MemoryRecord(content="a").id

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, content):
        with pytest.raises(ValidationError):
            MemoryRecord(content=content)

    def test_tags_deduplicated_in_order(self):
        record = MemoryRecord(content="x", tags=["b", "a", "b", "c", "a"])
        assert record.tags == ["b", "a", "c"]


class TestSearchFilter:
    def test_empty(self):
        assert SearchFilter().is_empty
        assert SearchFilter(tags=[]).is_empty
        assert not SearchFilter(agent_id="alfred").is_empty

    def test_cache_key_ignores_tag_order(self):
        assert SearchFilter(tags=["a", "b"]).cache_key() == SearchFilter(tags=["b", "a"]).cache_key()
        assert SearchFilter(agent_id="x").cache_key() != SearchFilter(session_id="x").cache_key()


def test_search_options_validation():
    assert SearchOptions().limit == 10
    with pytest.raises(ValidationError):
        SearchOptions(limit=0)
    with pytest.raises(ValidationError):
        SearchOptions(vector_weight=-0.1)


def test_hybrid_result_sub_scores_default_to_zero():
    result = HybridSearchResult(id="1", content="c", score=0.5)
    assert result.vector_score == 0.0
    assert result.bm25_score == 0.0


def test_dedupe_tags_handles_none():
    assert dedupe_tags(None) == []
