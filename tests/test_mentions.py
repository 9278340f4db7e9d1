"""
Tests for mention search: cache merge order, dedup and best-effort caching.
"""

import pytest

from connectors.errors import UnknownCredential
from connectors.invocation import InvocationEngine
from connectors.mentions import MentionAggregator, merge_mentions
from connectors.schemas import CachedMention

ORG = "org-1"


@pytest.fixture
def aggregator(registry, repository):
    engine = InvocationEngine(registry, repository, timeout_seconds=5, refresh_wait_seconds=0)
    return MentionAggregator(engine, repository)


class TestMergeMentions:
    def test_cached_first_and_first_id_wins(self):
        cached = [CachedMention(name="A", username="a")]
        live = [{"id": "a", "label": "A2"}, {"id": "b", "label": "B"}]
        assert merge_mentions(cached, live) == [
            {"id": "a", "label": "A", "image": ""},
            {"id": "b", "label": "B"},
        ]

    def test_entries_without_label_or_id_dropped(self):
        live = [{"id": "a", "label": ""}, {"id": "", "label": "X"}, {"id": "c", "label": "C"}]
        assert merge_mentions([], live) == [{"id": "c", "label": "C"}]


class TestSearchMentions:
    @pytest.mark.asyncio
    async def test_live_results_are_cached(self, aggregator, provider, repository, credential):
        provider.mention_result = [{"id": "jdoe", "label": "Jane", "image": "https://img/j"}]
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "ja"})

        assert result == [{"id": "jdoe", "label": "Jane", "image": "https://img/j"}]
        assert repository.mentions["fake"] == [
            CachedMention(name="Jane", username="jdoe", image="https://img/j")
        ]

    @pytest.mark.asyncio
    async def test_cache_merged_before_live(self, aggregator, provider, repository, credential):
        repository.mentions["fake"] = [CachedMention(name="Janet", username="janet")]
        provider.mention_result = [
            {"id": "janet", "label": "Janet (live)"},
            {"id": "jane", "label": "Jane"},
        ]
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "jan"})
        assert [m["id"] for m in result] == ["janet", "jane"]
        assert result[0]["label"] == "Janet"

    @pytest.mark.asyncio
    async def test_unsupported_marker_returned_verbatim(self, aggregator, provider, repository, credential):
        repository.mentions["fake"] = [CachedMention(name="Jane", username="jane")]
        provider.mention_result = {"none": True}
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "ja"})
        assert result == {"none": True}

    @pytest.mark.asyncio
    async def test_do_not_cache_entries_skip_cache(self, aggregator, provider, repository, credential):
        provider.mention_result = [
            {"id": "ch-1", "label": "#general", "doNotCache": True},
            {"id": "bob", "label": "Bob"},
        ]
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": ""})
        assert {m["id"] for m in result} == {"ch-1", "bob"}
        assert [m.username for m in repository.mentions["fake"]] == ["bob"]

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_tolerated(self, aggregator, provider, repository, credential):
        repository.fail_mention_writes = True
        provider.mention_result = [{"id": "bob", "label": "Bob"}]
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "b"})
        assert result == [{"id": "bob", "label": "Bob"}]

    @pytest.mark.asyncio
    async def test_live_fault_falls_back_to_cache(self, aggregator, provider, repository, credential):
        repository.mentions["fake"] = [CachedMention(name="Bob", username="bob")]
        provider.mention_result = RuntimeError("search down")
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "bo"})
        assert result == [{"id": "bob", "label": "Bob", "image": ""}]

    @pytest.mark.asyncio
    async def test_unknown_operation_falls_back_to_cache(self, aggregator, repository, credential):
        repository.mentions["fake"] = [CachedMention(name="Bob", username="bob")]
        result = await aggregator.search_mentions(ORG, credential.id, "nope", {"query": "bo"})
        assert [m["id"] for m in result] == ["bob"]

    @pytest.mark.asyncio
    async def test_unknown_credential(self, aggregator):
        with pytest.raises(UnknownCredential):
            await aggregator.search_mentions(ORG, "missing", "mention", {"query": "x"})


class TestMalformedLiveResults:
    @pytest.mark.asyncio
    async def test_non_dict_items_are_ignored(self, aggregator, provider, repository, credential):
        provider.mention_result = ["alice", None, {"id": "bob", "label": "Bob"}]
        result = await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "b"})

        assert result == [{"id": "bob", "label": "Bob"}]
        assert [m.username for m in repository.mentions["fake"]] == ["bob"]

    @pytest.mark.asyncio
    async def test_numeric_ids_are_cached_as_text(self, aggregator, provider, repository, credential):
        provider.mention_result = [{"id": 42, "label": "Answer"}]
        await aggregator.search_mentions(ORG, credential.id, "mention", {"query": "a"})

        assert repository.mentions["fake"][0].username == "42"

    def test_merge_skips_non_dict_items(self):
        assert merge_mentions([], ["x", {"id": "y", "label": "Y"}]) == [{"id": "y", "label": "Y"}]
