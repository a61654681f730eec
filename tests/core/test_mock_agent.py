import pytest

from flowcore.agent import (
    Finish,
    MockAgentProvider,
    MockStep,
    TextDelta,
    ToolCall,
    Usage,
)
from flowcore.agent.mock import split_words, step_to_events
from flowcore.agent.responses import agent_types, mock_agent_response


def test_split_words_preserves_text():  # noqa: D401
    words = split_words("Hello brave  world")
    assert words == ["Hello", " brave", " ", " world"]
    assert "".join(words) == "Hello brave  world"


def test_step_finish_reason_follows_last_part():  # noqa: D401
    step = MockStep(
        [
            {"type": "text", "text": "calling"},
            {"type": "tool-call", "toolCallId": "c", "toolName": "t", "input": {}},
        ],
        Usage(1, 1),
    )
    events = step_to_events(step)
    assert isinstance(events[1], ToolCall)
    assert events[-1] == Finish("tool-calls", Usage(1, 1))


def test_finish_rejects_unknown_reason():  # noqa: D401
    with pytest.raises(ValueError):
        Finish("exploded")


@pytest.mark.asyncio
async def test_provider_replays_last_step_when_exhausted():  # noqa: D401
    provider = MockAgentProvider(
        [MockStep("one"), MockStep("two")], chunk_delay_s=0
    )
    runs = []
    for _ in range(3):
        runs.append([ev async for ev in provider.stream([])])
    texts = [
        "".join(ev.delta for ev in run if isinstance(ev, TextDelta))
        for run in runs
    ]
    assert texts == ["one", "two", "two"]
    assert provider.info().metadata["steps"] == 2


def test_provider_requires_steps():  # noqa: D401
    with pytest.raises(ValueError):
        MockAgentProvider([])


def test_agent_response_templates():  # noqa: D401
    assert set(agent_types()) >= {"developer", "designer", "researcher", "writer", "analyst"}
    text = mock_agent_response("writer", "Docs", "Write the guide")
    assert "Task: Docs\nDescription: Write the guide" in text
    fallback = mock_agent_response("unknown", "T")
    assert fallback == mock_agent_response("developer", "T")
