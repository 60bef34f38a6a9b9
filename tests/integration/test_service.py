"""
Integration tests for the comic service.

Exercises the whole feedback loop against the in-memory store:
generate -> persist -> react -> stats -> guidance for the next comic.
"""

import json

import pytest

from conftest import ANALYSIS_TEXT, SCRIPT_TEXT, FakeLLM, completed
from nrrds.core.exceptions import PersistenceError, StorageDegradedError, ValidationError
from nrrds.feedback.preferences import PreferenceStore
from nrrds.models import Comic, Guidance, WeightedToken
from nrrds.service import ComicService
from nrrds.storage.kv import (
    KEY_COMIC_COUNTERS,
    KEY_RECENT_COMICS,
    comic_key,
    comic_reactions_key,
    user_key,
)


@pytest.fixture
def service(store, happy_llm, clock, rng):
    return ComicService(store, happy_llm, rng=rng, clock=clock)


def scripted_run(comic_json):
    return [completed(SCRIPT_TEXT), completed(ANALYSIS_TEXT), completed(json.dumps(comic_json))]


@pytest.mark.asyncio
async def test_generate_persists_and_indexes(service, store):
    """A generated comic is saved, listed and counted."""
    comic = await service.generate("u1", humor_level=11, panel_count=3)

    stored = await service.get_comic(comic.id)
    assert stored is not None
    assert stored.title == comic.title
    assert stored.tokens == comic.tokens

    assert await store.lrange(KEY_RECENT_COMICS, 0, -1) == [comic.id]
    assert await store.lrange(user_key("u1", "comics"), 0, -1) == [comic.id]
    counters = await store.hgetall(KEY_COMIC_COUNTERS)
    assert counters == {"total": "1", "theme:the": "1"}

    recent = await service.get_recent_comics()
    assert recent.ok
    assert [c.id for c in recent.value] == [comic.id]


@pytest.mark.asyncio
async def test_anonymous_generation_not_indexed_per_user(service, store):
    comic = await service.generate("anonymous")

    assert await store.lrange(KEY_RECENT_COMICS, 0, -1) == [comic.id]
    assert not await store.exists(user_key("anonymous", "comics"))
    assert not await store.exists(user_key("anonymous", "preference_state"))


@pytest.mark.asyncio
async def test_request_overrides_reach_the_script_prompt(service, happy_llm):
    await service.generate("u1", humor_level=2, panel_count=4, style_refs=["Calvin and Hobbes"])

    script_prompt = happy_llm.calls[0]["user_prompt"]
    assert "FUNNY DIAL: 2 / 11" in script_prompt
    assert "4 panels" in script_prompt
    assert "Calvin and Hobbes" in script_prompt


@pytest.mark.asyncio
async def test_reaction_loop(service, store):
    """Reactions use the stored comic's signals and update stats."""
    comic = await service.generate("u1")

    ack = await service.record_reaction(comic.id, "lol", user_id="u2")
    assert ack.degraded_steps == []
    assert ack.stats.counts["lol"] == 1

    token_stat = await store.get("token_stats:coffee")
    assert token_stat["positive"] == 1
    concept_stat = await store.get("concept_stats:tech")
    assert concept_stat["reaction_types"] == {"lol": 1}

    state = await PreferenceStore(store).load_state("u2")
    assert "coffee" in state.token_preferences
    assert "tech" in state.concept_preferences

    await service.record_reaction(comic.id, "offended", user_id="u3")
    await service.record_reaction(comic.id, "offended", user_id="u3", action="decrement")

    stats = await service.get_comic_stats(comic.id)
    assert stats.ok
    assert stats.value.total == 1
    assert stats.value.score == pytest.approx(1.9)
    assert stats.value.unique_users == 2

    reactions = await service.get_recent_reactions(comic.id)
    assert [r.type for r in reactions.value] == ["offended", "lol"]


@pytest.mark.asyncio
async def test_recent_reactions_skip_malformed_records(service, store):
    comic = await service.generate("u1")
    await service.record_reaction(comic.id, "lol", user_id="u2")
    await store.set("reaction:reaction_broken", {"id": "reaction_broken", "type": "lol"})
    await store.lpush(comic_reactions_key(comic.id), "reaction_broken")

    reactions = await service.get_recent_reactions(comic.id)

    assert reactions.ok
    assert [r.user_id for r in reactions.value] == ["u2"]


@pytest.mark.asyncio
async def test_invalid_reaction_rejected(service):
    with pytest.raises(ValidationError):
        await service.record_reaction("some-comic", "love")


@pytest.mark.asyncio
async def test_learned_preferences_steer_next_generation(store, comic_json, clock, rng):
    """Personal avoid/encourage lists end up in the script prompt."""
    llm = FakeLLM(scripted_run(comic_json))
    service = ComicService(store, llm, rng=rng, clock=clock)
    personal = Guidance(
        temperature=0.0,
        avoid_tokens=[WeightedToken(token="deadline", weight=0.9)],
        encourage_tokens=[WeightedToken(token="cats", weight=0.8)],
        token_weights={"deadline": -0.9, "cats": 0.8},
    )

    comic = await service.generate("u1", personal)

    prompt = llm.calls[0]["user_prompt"]
    assert "AVOID these language patterns readers found uninteresting: deadline" in prompt
    assert "ENCOURAGE these language/comedic patterns readers enjoyed: cats" in prompt
    assert comic.generation_context.avoided_tokens == ["deadline"]
    assert comic.generation_context.temperature == 0.0


@pytest.mark.asyncio
async def test_global_feedback_reaches_other_users(store, comic_json, clock, rng):
    """Strong population sentiment on a concept is avoided for new users."""
    llm = FakeLLM(scripted_run(comic_json) + scripted_run(comic_json))
    service = ComicService(store, llm, rng=rng, clock=clock)
    comic = await service.generate("author")

    for index in range(30):
        await service.record_reaction(comic.id, "offended", user_id=f"critic{index}", concepts=["work"])

    await service.generate(None, Guidance(temperature=0.0))

    prompt = llm.calls[3]["user_prompt"]
    assert "AVOID these overused themes:" in prompt
    assert "work" in prompt.split("AVOID these overused themes:")[1].split("\n")[0]


@pytest.mark.asyncio
async def test_persistence_failure_still_returns_comic(store, happy_llm, clock, rng, monkeypatch):
    service = ComicService(store, happy_llm, rng=rng, clock=clock)

    async def failing_set(key, value, ttl=None):
        raise StorageDegradedError("set", "disk full")

    monkeypatch.setattr(store, "set", failing_set)

    comic = await service.generate("u1")

    assert comic.title == "The Bug That Wouldn't Die"
    assert not await store.exists(comic_key(comic.id))


@pytest.mark.asyncio
async def test_persist_comic_verifies_write(service, store, monkeypatch, comic_json):
    comic = Comic.model_validate({**comic_json, "id": "ghost"})

    async def lost_write(key):
        return None

    monkeypatch.setattr(store, "get", lost_write)

    with pytest.raises(PersistenceError) as exc_info:
        await service.persist_comic(comic, "u1")
    assert exc_info.value.comic_id == "ghost"


@pytest.mark.asyncio
async def test_lookups_degrade_when_store_is_down(broken_store, happy_llm):
    service = ComicService(broken_store, happy_llm)

    recent = await service.get_recent_comics(500)
    stats = await service.get_comic_stats("anything")
    reactions = await service.get_recent_reactions("anything")

    assert (recent.ok, recent.value) == (False, [])
    assert (stats.ok, stats.value.total) == (False, 0)
    assert (reactions.ok, reactions.value) == (False, [])
    with pytest.raises(StorageDegradedError):
        await service.get_comic("anything")


@pytest.mark.asyncio
async def test_generation_survives_storage_outage(broken_store, happy_llm, clock, rng):
    """Every guidance source degrades to a default; the comic is still made."""
    service = ComicService(broken_store, happy_llm, rng=rng, clock=clock)

    comic = await service.generate("u1")

    assert comic.id == "the-bug-that-wouldnt-die-2025-03-14"
    assert comic.generation_context.temperature == 0.3
    assert "coffee" in comic.generation_context.avoided_concepts
