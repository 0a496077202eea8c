"""
Unit tests for council_engine.summary and council_engine.export.

Tests:
- Winning proposal, why, implementation and one-liner extraction
- Summary of a session nobody spoke in
- Markdown and JSONL transcript exports
- Idea bank hand-off payload and failures
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from council_engine.exceptions import EngineError
from council_engine.export import EXPORTERS, IdeaBankExporter, export_jsonl, export_markdown
from council_engine.models import (
    AgentInstance,
    CouncilMessage,
    CouncilSession,
    Persona,
    SessionStatus,
)
from council_engine.summary import DEFAULT_UX, fallback_summary, summarize_session
from council_engine.templates import build_session_config

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _agent(role: str, name: str, emoji: str) -> AgentInstance:
    return AgentInstance.from_persona(Persona(
        role=role, name=name, emoji=emoji, model="sonnet", core_identity=f"The {role}.",
    ))


@pytest.fixture
def session() -> CouncilSession:
    """A completed standard session with a clear winner."""
    s = CouncilSession(
        id="council-abc123",
        config=build_session_config("standard", context_prompt="Tools for focus"),
        created_at=START,
    )
    s.agents = {
        "visionary": _agent("visionary", "Visionary", "🔮"),
        "pragmatist": _agent("pragmatist", "Pragmatist", "🔨"),
        "critic": _agent("critic", "Critic", "🎯"),
    }
    script = [
        ("system", "Round 1: Proposals", 0, True),
        ("visionary", "Focus Radar: a calm dashboard that surfaces the one task that matters. "
                      "Why: attention is the scarcest resource.", 0, False),
        ("human", "Keep it tiny.", 0, False),
        ("critic", "I vote for Focus Radar.", 3, False),
        ("pragmatist", "1. Focus Radar.\n2. Habit Loom.", 3, False),
        ("pragmatist", "Trigger: morning login.\nData sources: task list and calendar.\n"
                       "Output: one focus card.\nOut of scope: mobile app.", 5, False),
    ]
    for i, (author, content, round_index, system) in enumerate(script):
        s.messages.append(CouncilMessage(
            id=f"msg-{i}",
            timestamp=START + timedelta(minutes=2 * i),
            author=author,
            content=content,
            round=round_index,
            reply_to=None,
            is_system_message=system,
        ))
    s.status = SessionStatus.COMPLETED
    s.current_round = 6
    return s


# ============================================================================
# Summary
# ============================================================================

def test_summary_finds_winner(session):
    output = summarize_session(session)

    assert output["winningProposal"] == "Focus Radar"
    assert "Focus Radar" in output["summary"]
    idea = output["idea"]
    assert idea["title"] == "Focus Radar"
    assert idea["summary"] == "a calm dashboard that surfaces the one task that matters."
    assert idea["why"] == "attention is the scarcest resource."
    assert "Trigger: morning login." in idea["implementation"]
    assert "Out of scope: mobile app." in idea["implementation"]
    assert idea["ux"] == DEFAULT_UX


def test_summary_metadata(session):
    output = summarize_session(session)
    assert output["participants"] == ["critic", "human", "pragmatist", "visionary"]
    assert output["rounds"][0] == "Proposals"
    assert output["messageCount"] == 6
    assert output["durationMinutes"] == 10.0


def test_summary_of_silent_session():
    s = CouncilSession(id="council-empty", config=build_session_config("quick"))
    output = summarize_session(s)
    assert output["winningProposal"] is None
    assert output["idea"]["title"] == "Council Discussion"
    assert output["summary"] == "The council ended before any discussion took place."
    assert output["participants"] == []


def test_fallback_summary(session):
    output = fallback_summary(session)
    assert output["summary"] == "Council session ended with 6 messages."
    assert output["idea"] is None


# ============================================================================
# Transcript export
# ============================================================================

def test_markdown_export(session):
    session.output = summarize_session(session)
    text = export_markdown(session)

    assert text.startswith("# Council Session council-abc123")
    assert "> Tools for focus" in text
    assert "## Round 1: Proposals" in text
    assert "## Round 4: Narrow" in text
    assert "**🔮 Visionary** (09:02:00):" in text
    assert "_09:00:00 Round 1: Proposals_" in text
    assert "**Human**" in text
    assert text.rstrip().endswith(session.output["summary"])


def test_jsonl_export(session):
    lines = export_jsonl(session).strip().split("\n")
    header = json.loads(lines[0])
    assert header["_session_id"] == "council-abc123"
    assert header["_message_count"] == 6
    assert header["_agents"] == ["visionary", "pragmatist", "critic"]

    first = json.loads(lines[1])
    assert first["isSystemMessage"] is True
    assert [json.loads(line)["id"] for line in lines[1:]] == [m.id for m in session.messages]


def test_exporters_registry():
    assert EXPORTERS["markdown"][1] == "text/markdown"
    assert EXPORTERS["jsonl"][1] == "application/x-ndjson"


# ============================================================================
# Idea bank
# ============================================================================

async def test_idea_bank_export(session):
    received: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/ideas"
        received.append(json.loads(request.content))
        return httpx.Response(201, json={"id": 42})

    client = httpx.AsyncClient(base_url="http://ideas.test", transport=httpx.MockTransport(handler))
    exporter = IdeaBankExporter("http://ideas.test", client=client)
    try:
        idea_id = await exporter.export(session.id, summarize_session(session))
    finally:
        await exporter.aclose()

    assert idea_id == "42"
    payload = received[0]
    assert payload["title"] == "Focus Radar"
    assert payload["tags"] == ["council-generated", "auto-exported"]
    assert payload["source"] == "council-session-council-abc123"


async def test_idea_bank_http_error(session):
    client = httpx.AsyncClient(
        base_url="http://ideas.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    exporter = IdeaBankExporter("http://ideas.test", client=client)
    try:
        with pytest.raises(EngineError, match="Idea bank export failed"):
            await exporter.export(session.id, fallback_summary(session))
    finally:
        await exporter.aclose()


def test_idea_bank_payload_without_idea():
    payload = IdeaBankExporter.build_payload("s1", {"summary": "Nothing decided."})
    assert payload["title"] == "Council Discussion"
    assert payload["summary"] == "Nothing decided."
