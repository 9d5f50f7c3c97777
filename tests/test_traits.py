from types import SimpleNamespace

import pytest

from steward_discord.traits import TraitAccumulator, TraitScores, personality_context
from steward_shared.llm_schemas import Big5Delta, TraitDelta


async def _seed_messages(store, user_id="u1", count=12):
    await store.upsert_user(user_id, "alice", "Alice")
    for i in range(count):
        await store.save_message(
            SimpleNamespace(
                discord_message_id=f"m{i}",
                channel_id="c1",
                channel_name="general",
                user_id=user_id,
                content=f"I spent the weekend refactoring my parser, attempt {i}",
                is_bot=False,
            )
        )


def test_apply_is_additive():
    start = TraitScores(big5={"O": 3.0, "C": -2.0, "E": 0.0, "A": 1.0, "N": 0.0})
    d1 = {"O": 4.0, "C": 1.0, "E": -3.0, "A": 0.0, "N": 2.0}
    d2 = {"O": 2.0, "C": -5.0, "E": 1.0, "A": 6.0, "N": -1.0}
    summed = {axis: d1[axis] + d2[axis] for axis in d1}

    stepwise = start.apply(d1, {"5": 3.0}).apply(d2, {"5": 2.0})
    at_once = start.apply(summed, {"5": 5.0})

    assert stepwise == at_once


def test_apply_clamps_each_delta():
    scores = TraitScores().apply({"O": 50.0, "N": -99.0}, {"3": 25.0, "42": 5.0})

    assert scores.big5["O"] == 10.0
    assert scores.big5["N"] == -10.0
    assert scores.enneagram == {"3": 10.0}


def test_summary_labels_only_significant_axes():
    scores = TraitScores(
        big5={"O": 14.0, "C": -12.0, "E": 9.0, "A": 0.0, "N": -10.0},
        enneagram={"5": 12.0, "7": 8.0, "1": 9.0, "2": 4.0},
    )

    assert scores.summarize() == (
        "Tendencies: open, flexible / Enneagram: 5 (Investigator), 1 (Reformer)"
    )


def test_summary_without_signal():
    assert TraitScores().summarize() == "Analyzing"


def test_from_stored_fills_missing_axes():
    scores = TraitScores.from_stored({"big5": {"O": 2}, "enneagram": {}})

    assert scores.big5 == {"O": 2.0, "C": 0.0, "E": 0.0, "A": 0.0, "N": 0.0}
    assert TraitScores.from_stored(None) == TraitScores()


def test_personality_context_lines():
    user = SimpleNamespace(
        display_name="Alice",
        intro="Backend dev, likes Postgres",
        personality_summary="Tendencies: open",
        message_count=42,
        notes=None,
    )

    assert personality_context(user) == (
        "Name: Alice\n"
        "Introduction: Backend dev, likes Postgres\n"
        "Personality: Tendencies: open\n"
        "Messages posted: 42"
    )
    assert personality_context(None) == ""


@pytest.mark.asyncio
async def test_reanalyze_writes_scores_and_observation(store, structured_client):
    await _seed_messages(store)
    client = structured_client(
        TraitDelta(
            observation="Methodical and curious",
            big5_delta=Big5Delta(O=6, C=15),
            enneagram_delta={"5": 7, "x": 3},
        )
    )
    accumulator = TraitAccumulator(store, client, threshold=20)

    updated = await accumulator.reanalyze("u1", "m11")

    assert updated.big5["O"] == 6.0
    assert updated.big5["C"] == 10.0
    user_id, scores, summary = store.trait_updates[0]
    assert user_id == "u1"
    assert scores == updated.model_dump()
    assert summary == "Analyzing / Enneagram: 5 (Investigator)"
    assert store.observations[0]["observation"] == "Methodical and curious"
    assert store.observations[0]["enneagram_delta"] == {"5": 7.0}
    assert store.observations[0]["source_message_id"] == "m11"


@pytest.mark.asyncio
async def test_reanalyze_failure_writes_nothing(store, structured_client):
    await _seed_messages(store)
    accumulator = TraitAccumulator(store, structured_client(ValueError("not json")))

    assert await accumulator.reanalyze("u1") is None
    assert store.trait_updates == []
    assert store.observations == []


@pytest.mark.asyncio
async def test_reanalyze_needs_enough_messages(store, structured_client):
    await _seed_messages(store, count=3)
    client = structured_client(TraitDelta())
    accumulator = TraitAccumulator(store, client)

    assert await accumulator.reanalyze("u1") is None
    assert client.calls == []


@pytest.mark.asyncio
async def test_observe_triggers_every_threshold_messages(store, structured_client):
    await _seed_messages(store)
    client = structured_client(TraitDelta(big5_delta=Big5Delta(E=2)))
    accumulator = TraitAccumulator(store, client, threshold=3)

    triggered = [accumulator.observe("u1", "a reasonably long message") for _ in range(4)]
    await accumulator.drain()

    assert triggered == [False, False, True, False]
    assert accumulator.count("u1") == 4
    assert len(client.calls) == 1
    assert store.users["u1"].personality_scores["big5"]["E"] == 2.0


def test_observe_ignores_short_messages(store):
    accumulator = TraitAccumulator(store, None, threshold=1)

    assert accumulator.observe("u1", "ok") is False
    assert accumulator.count("u1") == 0
