import pytest

from flowcore.agent import TextDelta
from flowcore.agent.factory import get_chat_agent, get_task_agent


@pytest.mark.asyncio
async def test_chat_agent_uses_configured_reply(config_dir):  # noqa: D401
    (config_dir / "base.yaml").write_text(
        "agent:\n  chunk_delay_ms: 0\n  reply_text: Hi there\n"
        "  prompt_tokens: 3\n  completion_tokens: 4\n",
        encoding="utf-8",
    )
    provider = get_chat_agent("project")
    events = [ev async for ev in provider.stream([])]
    assert "".join(e.delta for e in events if isinstance(e, TextDelta)) == "Hi there"
    assert events[-1].usage.total_tokens == 7
    assert provider.info().id == "project-chat"


def test_task_agent_returns_reply(config_dir):  # noqa: D401
    provider, reply = get_task_agent("analyst", "Revenue", None)
    assert "Task: Revenue" in reply
    assert provider.info().kind == "analyst"
