"""
Best-effort discussion summary, computed when a session completes.

Pattern-based: it pulls a winning proposal out of vote-like lines, the "why"
from the visionary, an implementation outline from the pragmatist and UX
principles from the cognitive-load agent. Nothing here calls a model, and a
transcript that matches no pattern still yields a usable summary.
"""
import re
from collections import Counter
from typing import Any, Iterable

from council_engine.models import CouncilMessage, CouncilSession, utcnow

DEFAULT_WHY = "Enable new workflows and reduce friction in daily tasks."
DEFAULT_UX = "Minimize cognitive load through clear information hierarchy and progressive disclosure."

_VOTE_PATTERNS = (
    re.compile(r"(?:1\.|votes? for|top pick:?)\s*([A-Z][A-Za-z \t-]+)", re.IGNORECASE),
    re.compile(r"^([A-Z][A-Za-z \t-]+):", re.MULTILINE),
)
_TITLE_LINE = re.compile(r"^([A-Z][A-Za-z \t-]+):")
_WHY_PATTERNS = (
    re.compile(r"why:?\s*([^.!?]+[.!?])", re.IGNORECASE),
    re.compile(r"valuable because:?\s*([^.!?]+[.!?])", re.IGNORECASE),
    re.compile(r"becomes possible:?\s*([^.!?]+[.!?])", re.IGNORECASE),
    re.compile(r"vision:?\s*([^.!?]+[.!?])", re.IGNORECASE),
)
_ANY_WHY = re.compile(r"(?:why|because|vision|valuable|matters):?\s*([^.!?]+[.!?])", re.IGNORECASE)
_IMPLEMENTATION_FIELDS = (
    ("Trigger", re.compile(r"triggers?:?\s*([^.\n]+\.?)", re.IGNORECASE)),
    ("Data sources", re.compile(r"data\s*sources?:?\s*([^.\n]+\.?)", re.IGNORECASE)),
    ("Output", re.compile(r"outputs?:?\s*([^.\n]+\.?)", re.IGNORECASE)),
    ("Out of scope", re.compile(r"out\s*of\s*scope:?\s*([^.\n]+\.?)", re.IGNORECASE)),
    ("Build estimate", re.compile(r"(?:build\s*)?estimate:?\s*([^.\n]+\.?)", re.IGNORECASE)),
)
_UX_PATTERNS = (
    re.compile(r"principles?:?\s*([^.\n]+\.?)", re.IGNORECASE),
    re.compile(r"(?:must|should|needs? to)\s+([^.\n]+\.?)", re.IGNORECASE),
    re.compile(r"cognitive\s+load:?\s*([^.\n]+\.?)", re.IGNORECASE),
)
_FLOW_HINT = re.compile(r"flows?|steps?|process|workflow", re.IGNORECASE)
_FLOW_STEP = re.compile(r"(?:\d+[.)]|step\s*\d+:?)\s*([^.\n]+\.?)", re.IGNORECASE)


def _round_index(session: CouncilSession, name: str) -> int | None:
    for i, r in enumerate(session.config.rounds):
        if name.lower() in r.name.lower():
            return i
    return None


def _spoken(messages: Iterable[CouncilMessage], round_index: int | None = None,
            author: str | None = None) -> list[CouncilMessage]:
    return [
        m for m in messages
        if not m.is_system_message
        and (round_index is None or m.round == round_index)
        and (author is None or m.author == author)
    ]


def extract_winning_title(narrow: list[CouncilMessage], mvp: list[CouncilMessage]) -> str:
    votes: Counter[str] = Counter()
    for msg in narrow:
        for pattern in _VOTE_PATTERNS:
            for match in pattern.finditer(msg.content):
                name = match.group(1).strip()
                if 3 < len(name) < 50:
                    votes[name] += 1
    if votes:
        return votes.most_common(1)[0][0]

    if mvp:
        match = _TITLE_LINE.match(mvp[0].content)
        if match:
            return match.group(1).strip()
    return ""


def extract_why(visionary: list[CouncilMessage], title: str) -> str:
    for msg in visionary:
        if title and title in msg.content:
            for pattern in _WHY_PATTERNS:
                match = pattern.search(msg.content)
                if match:
                    return match.group(1).strip()
    for msg in visionary:
        match = _ANY_WHY.search(msg.content)
        if match:
            return match.group(1).strip()
    return DEFAULT_WHY


def extract_implementation(content: str) -> str:
    sections = []
    for label, pattern in _IMPLEMENTATION_FIELDS:
        match = pattern.search(content)
        if match:
            sections.append(f"{label}: {match.group(1).strip()}")
    return "\n".join(sections) if sections else content[:500]


def extract_ux(cognitive: list[CouncilMessage], title: str) -> str:
    principles: list[str] = []
    for msg in cognitive:
        if title and title not in msg.content:
            continue
        for pattern in _UX_PATTERNS:
            for match in pattern.finditer(msg.content):
                principle = match.group(1).strip()
                if 10 < len(principle) < 200:
                    principles.append(principle)
    return "\n".join(principles[:3]) or DEFAULT_UX


def extract_one_liner(proposals: list[CouncilMessage], title: str) -> str:
    if not title:
        return ""
    pattern = re.compile(rf"{re.escape(title)}:?\s*([^.\n]+\.?)", re.IGNORECASE)
    for msg in proposals:
        if title in msg.content:
            match = pattern.search(msg.content)
            if match and len(match.group(1)) > 10:
                return match.group(1).strip()
    return ""


def extract_flow(messages: list[CouncilMessage], title: str) -> str:
    steps: list[str] = []
    for msg in messages:
        if not _FLOW_HINT.search(msg.content):
            continue
        if title and title not in msg.content:
            continue
        steps.extend(m.group(1).strip() for m in _FLOW_STEP.finditer(msg.content))
    return "\n".join(steps[:5])


def _duration_minutes(session: CouncilSession) -> float:
    end = session.messages[-1].timestamp if session.messages else utcnow()
    return round(max((end - session.created_at).total_seconds(), 0.0) / 60, 1)


def fallback_summary(session: CouncilSession) -> dict[str, Any]:
    """Minimal output used when extraction itself fails."""
    return {
        "summary": f"Council session ended with {len(session.messages)} messages.",
        "winningProposal": None,
        "idea": None,
        "participants": list(session.agents),
        "rounds": [r.name for r in session.config.rounds],
        "messageCount": len(session.messages),
        "durationMinutes": _duration_minutes(session),
    }


def summarize_session(session: CouncilSession) -> dict[str, Any]:
    """Build the ``output`` of a completed session."""
    messages = session.messages
    spoken = _spoken(messages)

    narrow_index = _round_index(session, "Narrow")
    narrow = _spoken(messages, narrow_index) if narrow_index is not None else []
    mvp_index = _round_index(session, "MVP Scope")
    mvp = _spoken(messages, mvp_index) if mvp_index is not None else []
    proposals_index = _round_index(session, "Proposals")
    proposals = _spoken(messages, proposals_index) if proposals_index is not None else []

    title = extract_winning_title(narrow, mvp)
    pragmatist_mvp = [m for m in mvp if m.author == "pragmatist"]

    idea = {
        "title": title or "Council Discussion",
        "summary": extract_one_liner(proposals, title) or (
            f"A tool to {title.lower()}" if title else "Ideas explored but no clear winner emerged"
        ),
        "why": extract_why(_spoken(messages, author="visionary"), title),
        "implementation": extract_implementation(pragmatist_mvp[0].content) if pragmatist_mvp else "",
        "ux": extract_ux(_spoken(messages, author="cognitive-load"), title),
        "flow": extract_flow(spoken, title),
    }

    speakers = sorted({m.author for m in spoken})
    if title:
        headline = f"The council converged on '{title}' after {len(spoken)} contributions."
    elif spoken:
        headline = f"The council exchanged {len(spoken)} contributions without a clear winner."
    else:
        headline = "The council ended before any discussion took place."

    return {
        "summary": headline,
        "winningProposal": title or None,
        "idea": idea,
        "participants": speakers,
        "rounds": [r.name for r in session.config.rounds],
        "messageCount": len(messages),
        "durationMinutes": _duration_minutes(session),
    }
