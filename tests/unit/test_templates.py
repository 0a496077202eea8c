"""
Unit tests for council_engine.templates.

Tests:
- Template catalog shape
- Session config construction (standard, quick, freeForAll, custom rounds)
- Round payload validation
"""
import pytest

from council_engine.exceptions import CouncilValidationError
from council_engine.templates import (
    FREE_FOR_ALL,
    QUICK_ROUNDS,
    STANDARD_ROUNDS,
    build_session_config,
    get_templates,
    parse_round,
)


# ============================================================================
# Catalog
# ============================================================================

def test_catalog_lists_builtin_templates():
    templates = get_templates()
    assert set(templates) == {"standard", "quick", FREE_FOR_ALL}
    assert len(templates["standard"]["rounds"]) == 6
    assert [r["name"] for r in templates["quick"]["rounds"]] == ["Pitch", "Rapid Fire", "Decision"]
    assert templates[FREE_FOR_ALL]["freeForAll"] is True


def test_standard_rounds_all_have_wrap_up():
    assert all(r.wrap_up_prompt for r in STANDARD_ROUNDS)
    assert STANDARD_ROUNDS[0].name == "Proposals"
    assert STANDARD_ROUNDS[0].duration_seconds == 300


def test_standard_round_table():
    assert [(r.name, r.duration_seconds) for r in STANDARD_ROUNDS] == [
        ("Proposals", 300),
        ("Reactions", 300),
        ("Defense", 180),
        ("Narrow", 180),
        ("Debate", 300),
        ("MVP Scope", 300),
    ]
    assert STANDARD_ROUNDS[0].wrap_up_prompt == "30 seconds remaining. Finalize your proposals."
    assert STANDARD_ROUNDS[-1].wrap_up_prompt == "Finalize the MVP scope."


def test_round_wire_format_is_camel_case():
    data = STANDARD_ROUNDS[0].to_dict()
    assert data["durationSeconds"] == 300
    assert data["wrapUpPrompt"]
    assert data["wrapUpSent"] is False


# ============================================================================
# build_session_config
# ============================================================================

def test_default_template_is_standard():
    config = build_session_config()
    assert config.rounds == STANDARD_ROUNDS
    assert not config.free_for_all
    assert config.total_rounds == 6


def test_quick_template():
    config = build_session_config("quick")
    assert config.rounds == QUICK_ROUNDS


def test_free_for_all_has_no_rounds():
    config = build_session_config(FREE_FOR_ALL, custom_rounds=[{"name": "x"}])
    assert config.free_for_all
    assert config.rounds == ()
    assert config.total_rounds == 0


def test_custom_rounds_override_template():
    config = build_session_config(
        "quick",
        custom_rounds=[{"name": " Sprint ", "durationSeconds": 60, "prompt": "All agents: go", "wrapUpPrompt": "Done?"}],
    )
    assert config.total_rounds == 1
    assert config.rounds[0].name == "Sprint"
    assert config.rounds[0].wrap_up_prompt == "Done?"


def test_context_prompt_is_trimmed():
    assert build_session_config("quick", context_prompt="  Build for nurses  ").context_prompt == "Build for nurses"
    assert build_session_config("quick", context_prompt="   ").context_prompt is None


def test_unknown_template_rejected():
    with pytest.raises(CouncilValidationError, match="Unknown template"):
        build_session_config("marathon")


def test_empty_custom_rounds_rejected():
    with pytest.raises(CouncilValidationError) as exc:
        build_session_config(custom_rounds=[])
    assert "at least one round" in exc.value.details


# ============================================================================
# parse_round
# ============================================================================

def test_parse_round_missing_fields():
    with pytest.raises(CouncilValidationError) as exc:
        parse_round({"name": "Pitch"}, 2)
    assert exc.value.message == "Invalid round data"
    assert "round 2 missing: durationSeconds, prompt" == exc.value.details


@pytest.mark.parametrize("duration", [-5, 1.5, "60", True])
def test_parse_round_rejects_bad_duration(duration):
    with pytest.raises(CouncilValidationError, match="Invalid round data"):
        parse_round({"name": "Pitch", "durationSeconds": duration, "prompt": "go"})


def test_parse_round_rejects_non_object():
    with pytest.raises(CouncilValidationError):
        parse_round(["Pitch", 60, "go"])
