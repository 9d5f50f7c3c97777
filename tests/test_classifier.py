import pytest

from steward_discord.classifier import IntentClassifier
from steward_shared.llm_schemas import IntentClassification


@pytest.mark.asyncio
async def test_classify_returns_model_intent(structured_client):
    client = structured_client(IntentClassification(intent="self_introduction"))
    classifier = IntentClassifier(client)

    intent = await classifier.classify("Hi all, I'm Alice and I build data pipelines.", "introductions")

    assert intent == "self_introduction"
    system_prompt = client.calls[0][0][0].content
    assert "#introductions" in system_prompt


@pytest.mark.asyncio
async def test_classify_defaults_to_other(structured_client):
    assert await IntentClassifier(None).classify("Hi all, I'm Alice.") == "other"
    assert await IntentClassifier(structured_client()).classify("Hi all, I'm Alice.") == "other"

    short = structured_client(IntentClassification(intent="greeting"))
    assert await IntentClassifier(short).classify("yo") == "other"
    assert short.calls == []
