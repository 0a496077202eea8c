"""
Utterance generation — "produce the next message for this agent".

Backends:
- LiteLLMGenerator: direct litellm.acompletion() per turn
- RemoteSessionGenerator: one long-lived session per agent on a remote
  agent-session gateway (``POST /tools/invoke``)

Both raise GenerationError on timeout, upstream failure or an empty reply;
the turn scheduler turns that into a system message and moves on.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

import httpx
import litellm
from litellm import acompletion

from council_engine.config import EngineConfig
from council_engine.exceptions import GenerationError
from council_engine.models import AgentInstance, CouncilMessage, Persona, SYSTEM_AUTHOR

logger = logging.getLogger("council.engine.generator")


@dataclass(frozen=True)
class TurnRequest:
    """Everything one agent needs to speak once."""
    agent: AgentInstance
    prompt: str
    transcript: tuple[CouncilMessage, ...] = ()
    context_prompt: str | None = None
    round_index: int = 0
    session_id: str = ""


def resolve_model(config: EngineConfig, tier: str) -> str:
    """Map a persona model tier (``opus``, ``sonnet``) to a litellm model id."""
    return config.model_tiers.get(tier) or config.model_tiers.get("sonnet", tier)


def build_system_prompt(persona: Persona, context_prompt: str | None = None) -> str:
    values = "\n".join(f"- {v}" for v in persona.values) or "- (none stated)"
    parts = [
        f"You are {persona.name} in a council discussion.",
        f"Core Identity: {persona.core_identity}",
        f"Values:\n{values}",
    ]
    if persona.discomfort:
        parts.append(f"What Makes You Uncomfortable: {persona.discomfort}")
    if persona.staying_true:
        parts.append(f"Staying True: {persona.staying_true}")
    if persona.response_guidelines:
        parts.append(f"Guidelines: {persona.response_guidelines}")
    if context_prompt:
        parts.append(f"Context for this council: {context_prompt}")
    parts.append(
        "IMPORTANT: You are participating in a real-time council discussion. "
        "Keep responses focused and concise (2-3 paragraphs max). Engage directly "
        "with other agents' points. No preambles or sign-offs."
    )
    return "\n\n".join(parts)


def render_transcript(messages: Sequence[CouncilMessage]) -> str:
    lines = []
    for msg in messages:
        speaker = "[system]" if msg.is_system_message or msg.author == SYSTEM_AUTHOR else msg.author
        lines.append(f"{speaker}: {msg.content}")
    return "\n\n".join(lines)


class UtteranceGenerator(ABC):
    """Opaque "generate next utterance" capability."""

    @abstractmethod
    async def generate(self, request: TurnRequest) -> str:
        """Return the agent's reply text or raise GenerationError."""

    async def release(self, session_id: str) -> None:
        """Forget per-session state once a session is finished."""
        return None

    async def aclose(self) -> None:
        return None


class LiteLLMGenerator(UtteranceGenerator):
    """
    One litellm completion per turn.

    Usage:
        generator = LiteLLMGenerator(config)
        text = await generator.generate(TurnRequest(agent=agent, prompt="..."))
    """

    def __init__(self, config: EngineConfig):
        self.config = config
        litellm.drop_params = True

    def build_messages(self, request: TurnRequest) -> list[dict[str, str]]:
        window = request.transcript[-self.config.transcript_window:] if self.config.transcript_window else ()
        messages = [{
            "role": "system",
            "content": build_system_prompt(request.agent.persona, request.context_prompt),
        }]
        if window:
            messages.append({
                "role": "user",
                "content": "Discussion so far:\n\n" + render_transcript(window),
            })
        messages.append({"role": "user", "content": request.prompt})
        return messages

    async def generate(self, request: TurnRequest) -> str:
        model = resolve_model(self.config, request.agent.model)
        timeout = self.config.generation_timeout_seconds
        try:
            response = await asyncio.wait_for(
                acompletion(
                    model=model,
                    messages=self.build_messages(request),
                    temperature=self.config.default_temperature,
                    max_tokens=self.config.max_tokens,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Generation for %s timed out after %.0fs", request.agent.role, timeout)
            raise GenerationError(f"timed out after {timeout:.0f}s")
        except Exception as e:
            logger.error("Generation for %s failed: %s", request.agent.role, e)
            raise GenerationError(f"upstream error: {e}") from e

        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise GenerationError("empty reply")
        return content


class RemoteSessionGenerator(UtteranceGenerator):
    """
    Agents hosted on a remote agent-session gateway.

    Each agent gets one remote session (``sessions_spawn``), created on its
    first turn; every turn then sends the transcript lines the agent has not
    seen yet plus the prompt (``sessions_send``) and returns the reply.
    """

    SPAWN_TIMEOUT_SECONDS = 1800
    SEND_TIMEOUT_SECONDS = 60

    def __init__(self, config: EngineConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.remote_gateway_token:
            headers["Authorization"] = f"Bearer {config.remote_gateway_token}"
        self._client = client or httpx.AsyncClient(
            base_url=config.remote_gateway_url,
            headers=headers,
            timeout=config.generation_timeout_seconds,
        )
        self._session_keys: dict[tuple[str, str], str] = {}
        self._seen: dict[tuple[str, str], int] = {}

    async def _invoke(self, tool: str, args: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post("/tools/invoke", json={"tool": tool, "args": args})
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise GenerationError(f"{tool} failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"{tool} returned invalid JSON") from e
        if not data.get("ok"):
            raise GenerationError(data.get("error") or f"{tool} failed")
        return (data.get("result") or {}).get("details") or {}

    async def _session_for(self, request: TurnRequest) -> str:
        role = request.agent.role
        key = self._session_keys.get((request.session_id, role))
        if key:
            return key
        details = await self._invoke("sessions_spawn", {
            "task": build_system_prompt(request.agent.persona, request.context_prompt),
            "label": f"council-{role}",
            "model": resolve_model(self.config, request.agent.model),
            "timeoutSeconds": self.SPAWN_TIMEOUT_SECONDS,
        })
        key = details.get("childSessionKey")
        if not key:
            raise GenerationError("No session key returned from spawn")
        self._session_keys[(request.session_id, role)] = key
        logger.info("Spawned remote session for %s in %s", role, request.session_id)
        return key

    async def generate(self, request: TurnRequest) -> str:
        slot = (request.session_id, request.agent.role)
        session_key = await self._session_for(request)

        unseen = request.transcript[self._seen.get(slot, 0):]
        message = request.prompt
        if unseen:
            message = render_transcript(unseen) + "\n\n---\n\n" + request.prompt

        details = await self._invoke("sessions_send", {
            "sessionKey": session_key,
            "message": message,
            "timeoutSeconds": self.SEND_TIMEOUT_SECONDS,
        })
        self._seen[slot] = len(request.transcript)
        if details.get("sessionKey"):
            self._session_keys[slot] = details["sessionKey"]

        reply = (details.get("reply") or "").strip()
        if not reply:
            raise GenerationError("empty reply")
        return reply

    async def release(self, session_id: str) -> None:
        """Drop the remote session mapping for every agent of ``session_id``."""
        slots = {slot for slot in (*self._session_keys, *self._seen) if slot[0] == session_id}
        for slot in slots:
            self._session_keys.pop(slot, None)
            self._seen.pop(slot, None)
        if slots:
            logger.info("Released %d remote sessions for %s", len(slots), session_id)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_generator(config: EngineConfig) -> UtteranceGenerator:
    if config.generator_backend == "remote":
        return RemoteSessionGenerator(config)
    return LiteLLMGenerator(config)
