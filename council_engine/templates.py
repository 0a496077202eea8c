"""
Round templates and session config construction.

Templates:
  standard   — 6 rounds, ~20 minutes, each with a wrap-up prompt
  quick      — 3 rounds (Pitch, Rapid Fire, Decision)
  freeForAll — no rounds, no timer
"""
from typing import Any

from council_engine.exceptions import CouncilValidationError
from council_engine.models import Round, SessionConfig

FREE_FOR_ALL = "freeForAll"
DEFAULT_TEMPLATE = "standard"

STANDARD_ROUNDS: tuple[Round, ...] = (
    Round(
        name="Proposals",
        duration_seconds=300,
        prompt="Visionary: Propose 2-3 distinct tool ideas. For each: name, one-liner, why valuable, what becomes possible.",
        wrap_up_prompt="30 seconds remaining. Finalize your proposals.",
    ),
    Round(
        name="Reactions",
        duration_seconds=300,
        prompt="All agents: React to the proposals through your specific lens. Be direct.",
        wrap_up_prompt="30 seconds. Final reactions.",
    ),
    Round(
        name="Defense",
        duration_seconds=180,
        prompt="Visionary: Address the council's concerns. Concede where valid, push back where wrong.",
        wrap_up_prompt="Wrap up your defense.",
    ),
    Round(
        name="Narrow",
        duration_seconds=180,
        prompt="All agents: Vote for top 2 ideas. Brief reasoning.",
        wrap_up_prompt="Final votes.",
    ),
    Round(
        name="Debate",
        duration_seconds=300,
        prompt="Stress-test the top 2 finalists. Attack, defend, evolve.",
        wrap_up_prompt="Converge on a winner.",
    ),
    Round(
        name="MVP Scope",
        duration_seconds=300,
        prompt="Define the minimum viable version. Trigger, data sources, output, what's OUT of scope.",
        wrap_up_prompt="Finalize the MVP scope.",
    ),
)

QUICK_ROUNDS: tuple[Round, ...] = (
    Round(
        name="Pitch",
        duration_seconds=180,
        prompt="Visionary: One idea. Make it count.",
    ),
    Round(
        name="Rapid Fire",
        duration_seconds=300,
        prompt="All: Quick reactions. No essays. Hit the key points.",
    ),
    Round(
        name="Decision",
        duration_seconds=180,
        prompt="Converge: Yes or no? If yes, define scope. If no, why?",
    ),
)

ROUND_TEMPLATES: dict[str, tuple[Round, ...]] = {
    "standard": STANDARD_ROUNDS,
    "quick": QUICK_ROUNDS,
}


def get_templates() -> dict[str, dict[str, Any]]:
    """Return the template catalog in wire format."""
    return {
        "standard": {
            "name": "Standard",
            "description": "6 rounds, ~20 minutes total",
            "rounds": [r.to_dict() for r in STANDARD_ROUNDS],
        },
        "quick": {
            "name": "Quick",
            "description": "3 rounds, ~15 minutes total",
            "rounds": [r.to_dict() for r in QUICK_ROUNDS],
        },
        FREE_FOR_ALL: {
            "name": "Free-for-all",
            "description": "No rounds, no timer, open discussion",
            "freeForAll": True,
        },
    }


def parse_round(raw: Any, index: int = 0) -> Round:
    """Validate one round payload (camelCase wire format)."""
    if not isinstance(raw, dict):
        raise CouncilValidationError(
            "Invalid round data", details=f"round {index} must be an object"
        )

    name = raw.get("name")
    duration = raw.get("durationSeconds")
    prompt = raw.get("prompt")

    missing = [
        key for key, value in (
            ("name", name), ("durationSeconds", duration), ("prompt", prompt)
        )
        if not value
    ]
    if missing:
        raise CouncilValidationError(
            "Invalid round data",
            details=f"round {index} missing: {', '.join(missing)}",
        )
    if not isinstance(name, str) or not isinstance(prompt, str):
        raise CouncilValidationError(
            "Invalid round data", details=f"round {index}: name and prompt must be strings"
        )
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise CouncilValidationError(
            "Invalid round data",
            details=f"round {index}: durationSeconds must be a positive integer",
        )

    wrap_up = raw.get("wrapUpPrompt")
    if wrap_up is not None and not isinstance(wrap_up, str):
        raise CouncilValidationError(
            "Invalid round data", details=f"round {index}: wrapUpPrompt must be a string"
        )

    return Round(
        name=name.strip(),
        duration_seconds=duration,
        prompt=prompt.strip(),
        wrap_up_prompt=wrap_up or None,
    )


def parse_rounds(raw_rounds: Any) -> tuple[Round, ...]:
    """Validate a list of round payloads."""
    if not isinstance(raw_rounds, list):
        raise CouncilValidationError("Invalid template data", details="rounds must be a list")
    return tuple(parse_round(r, i) for i, r in enumerate(raw_rounds))


def build_session_config(
    template: str | None = None,
    custom_rounds: list[Any] | None = None,
    context_prompt: str | None = None,
) -> SessionConfig:
    """
    Build an immutable SessionConfig for a new session.

    ``freeForAll`` wins over everything; otherwise non-empty custom rounds
    override the named template (default ``standard``).

    Raises:
        CouncilValidationError: unknown template, empty or malformed rounds.
    """
    context = context_prompt.strip() if context_prompt and context_prompt.strip() else None

    if template == FREE_FOR_ALL:
        return SessionConfig(rounds=(), free_for_all=True, context_prompt=context)

    if custom_rounds is not None:
        rounds = parse_rounds(custom_rounds)
        if not rounds:
            raise CouncilValidationError(
                "Invalid round data", details="customRounds must contain at least one round"
            )
        return SessionConfig(rounds=rounds, free_for_all=False, context_prompt=context)

    name = template or DEFAULT_TEMPLATE
    if name not in ROUND_TEMPLATES:
        raise CouncilValidationError(f"Unknown template: {name}")
    return SessionConfig(rounds=ROUND_TEMPLATES[name], free_for_all=False, context_prompt=context)
