import pytest

from steward_discord.volunteer import VolunteerPolicy, looks_like_question, mentions_tech


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _policy(clock, roll=0.0, **kwargs):
    return VolunteerPolicy(clock=clock, rng=lambda: roll, **kwargs)


@pytest.mark.parametrize(
    "text",
    ["Has anyone tried RAG with pgvector?", "how do you keep prompt caching warm", "LLM evals？"],
)
def test_tech_questions(text):
    assert looks_like_question(text) and mentions_tech(text)


def test_plain_chat_is_not_a_tech_question():
    assert not mentions_tech("What are you all doing this weekend?")
    assert not looks_like_question("Shipped the new embedding pipeline today")


def test_inactive_channel_never_volunteers():
    policy = _policy(FakeClock())

    assert not policy.should_volunteer("c1", "How do embeddings work?")


def test_active_channel_volunteers_then_cools_down():
    clock = FakeClock()
    policy = _policy(clock, cooldown=600, active_window=1800)
    policy.mark_active("c1")

    assert policy.should_volunteer("c1", "How do embeddings work?")

    clock.now += 60
    policy.mark_active("c1")
    assert not policy.should_volunteer("c1", "Which LLM is best for agents?")

    clock.now += 600
    assert policy.should_volunteer("c1", "Which LLM is best for agents?")


def test_activity_window_expires():
    clock = FakeClock()
    policy = _policy(clock, active_window=1800)
    policy.mark_active("c1")

    clock.now += 1801
    assert not policy.should_volunteer("c1", "How do embeddings work?")


def test_probability_roll_and_disabled():
    clock = FakeClock()
    unlucky = _policy(clock, roll=0.9, probability=0.3)
    unlucky.mark_active("c1")
    assert not unlucky.should_volunteer("c1", "How do embeddings work?")

    disabled = _policy(clock, enabled=False)
    disabled.mark_active("c1")
    assert not disabled.should_volunteer("c1", "How do embeddings work?")
