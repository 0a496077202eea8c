"""
Council Export — transcript export and idea-bank hand-off.

Formats:
- JSONL: one JSON object per message, preceded by a session header line
- Markdown: human-readable transcript grouped by round

Idea bank:
- IdeaBankExporter POSTs the summary of a completed session to
  ``{idea_bank_url}/api/ideas`` and returns the created idea id.
"""
import json
import logging
from typing import Any

import httpx

from council_engine.exceptions import EngineError
from council_engine.models import CouncilSession, utcnow

logger = logging.getLogger("council.engine.export")


def export_jsonl(session: CouncilSession) -> str:
    """
    Export a session's transcript as JSONL.

    First line is a header object (keys prefixed with ``_``), then one line
    per message in transcript order:
    {"id": "...", "timestamp": "...", "author": "visionary", "content": "...",
     "round": 0, "isSystemMessage": false}
    """
    header = {
        "_session_id": session.id,
        "_status": session.status.value,
        "_free_for_all": session.config.free_for_all,
        "_rounds": [r.name for r in session.config.rounds],
        "_agents": list(session.agents),
        "_message_count": len(session.messages),
        "_created_at": session.created_at.isoformat(),
        "_exported_at": utcnow().isoformat(),
    }
    lines = [json.dumps(header, ensure_ascii=False)]
    lines.extend(json.dumps(m.to_dict(), ensure_ascii=False) for m in session.messages)
    return "\n".join(lines) + "\n"


def export_markdown(session: CouncilSession) -> str:
    """Export a session as a Markdown transcript."""
    parts: list[str] = [f"# Council Session {session.id}"]
    mode = "Free-for-all" if session.config.free_for_all else f"{session.config.total_rounds} rounds"
    parts.append(
        f"**Status:** {session.status.value} | "
        f"**Mode:** {mode} | "
        f"**Date:** {session.created_at.strftime('%Y-%m-%d %H:%M UTC')}"
    )
    if session.config.context_prompt:
        parts.append("")
        parts.append(f"> {session.config.context_prompt}")
    parts.append("")
    parts.append("---")

    names = {role: f"{a.emoji} {a.display_name}" for role, a in session.agents.items()}
    current_round: int | None = None
    for msg in session.messages:
        if not session.config.free_for_all and msg.round != current_round:
            current_round = msg.round
            if 0 <= msg.round < session.config.total_rounds:
                parts.append("")
                parts.append(f"## Round {msg.round + 1}: {session.config.rounds[msg.round].name}")
        parts.append("")
        stamp = msg.timestamp.strftime("%H:%M:%S")
        if msg.is_system_message:
            parts.append(f"_{stamp} {msg.content}_")
            continue
        label = names.get(msg.author, msg.author.capitalize())
        if msg.reply_to:
            label += f" → @{msg.reply_to}"
        parts.append(f"**{label}** ({stamp}):")
        parts.append("")
        parts.append(msg.content)

    summary = (session.output or {}).get("summary")
    if summary:
        parts.append("")
        parts.append("---")
        parts.append("")
        parts.append("## Summary")
        parts.append("")
        parts.append(summary)

    return "\n".join(parts) + "\n"


EXPORTERS = {
    "markdown": (export_markdown, "text/markdown"),
    "jsonl": (export_jsonl, "application/x-ndjson"),
}


class IdeaBankExporter:
    """
    Hand a completed session's idea to an external idea bank.

    Usage:
        exporter = IdeaBankExporter("http://localhost:3001")
        idea_id = await exporter.export(session.id, session.output)
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = 15.0):
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    @staticmethod
    def build_payload(session_id: str, output: dict[str, Any]) -> dict[str, Any]:
        idea = output.get("idea") or {}
        return {
            "title": idea.get("title") or "Council Discussion",
            "summary": idea.get("summary") or output.get("summary", ""),
            "why": idea.get("why", ""),
            "implementation": idea.get("implementation", ""),
            "ux": idea.get("ux", ""),
            "flow": idea.get("flow", ""),
            "tags": ["council-generated", "auto-exported"],
            "source": f"council-session-{session_id}",
        }

    async def export(self, session_id: str, output: dict[str, Any]) -> str | None:
        """POST the idea; returns its id, or None when the bank returns none."""
        payload = self.build_payload(session_id, output)
        try:
            resp = await self._client.post("/api/ideas", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise EngineError(f"Idea bank export failed: {e}") from e
        idea_id = data.get("id") if isinstance(data, dict) else None
        logger.info("Session %s exported to idea bank (id=%s)", session_id, idea_id)
        return str(idea_id) if idea_id is not None else None

    async def aclose(self) -> None:
        await self._client.aclose()
