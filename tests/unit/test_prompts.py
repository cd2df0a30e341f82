"""Unit tests for prompt construction."""

import pytest

from sentra.api.prompts import (
    EXAMPLES_HEADER,
    MEMORY_HEADER,
    NOT_SPECIFIED,
    PromptExamples,
    build_prompt,
    build_system_prompt,
    clamp_token_limit,
    dedupe_memories,
    format_history,
    load_prompt_examples,
)
from sentra.store.records import Character


@pytest.mark.parametrize("value", [256, 512, 1024, "512", 512.0])
def test_clamp_keeps_allowed_limits(value):
    assert clamp_token_limit(value) == int(float(value))


@pytest.mark.parametrize("value", [None, 0, -1, 100, 2048, 511, "lots", "", True, [], {}, 256.5])
def test_clamp_defaults_everything_else(value):
    assert clamp_token_limit(value) == 1024


def test_every_empty_field_is_not_specified():
    prompt = build_system_prompt(Character(name="Mara"))

    for label in (
        "Species", "Gender", "Age", "Description", "Appearance", "Outfit",
        "Background", "Temperament", "Talking style", "Special ability",
        "Family", "Job", "Residence", "Relationship status", "Tags",
    ):
        assert f"{label}: {NOT_SPECIFIED}" in prompt
    assert f"Scenario (character's default scenario):\n{NOT_SPECIFIED}" in prompt


def test_blank_strings_count_as_missing():
    prompt = build_system_prompt(Character(name="Mara", job="   ", tags=["", " "]))

    assert f"Job: {NOT_SPECIFIED}" in prompt
    assert f"Tags: {NOT_SPECIFIED}" in prompt


def test_profile_fields_from_stored_keys():
    character = Character.model_validate({
        "name": "Mara",
        "characterDescription": "A harbour pilot",
        "talkingStyle": "Dry and quick",
        "age": 34,
        "tags": ["sea", "mystery"],
    })
    prompt = build_system_prompt(character)

    assert "Description: A harbour pilot" in prompt
    assert "Talking style: Dry and quick" in prompt
    assert "Age: 34" in prompt
    assert "Tags: sea, mystery" in prompt


def test_custom_scenario_replaces_default():
    character = Character(name="Mara", scenario="At the docks")
    prompt = build_system_prompt(character, custom_scenario="On a sinking ship")

    assert "On a sinking ship" in prompt
    assert "custom scenario for this chat" in prompt
    assert "At the docks" not in prompt


@pytest.mark.parametrize("custom", [None, "", "   "])
def test_default_scenario_without_override(custom):
    prompt = build_system_prompt(Character(name="Mara", scenario="At the docks"), custom_scenario=custom)

    assert "Scenario (character's default scenario):\nAt the docks" in prompt
    assert "custom scenario" not in prompt


def test_memories_deduplicated_in_order():
    assert dedupe_memories(["b", "a", "b", "", None, "a", "c"]) == ["b", "a", "c"]

    prompt = build_system_prompt(Character(name="Mara"), memories=["alpha memory", "beta memory", "alpha memory"])
    assert prompt.count("alpha memory") == 1
    assert f"{MEMORY_HEADER}\n\nalpha memory\n\nbeta memory" in prompt


def test_no_memory_section_without_memories():
    assert MEMORY_HEADER not in build_system_prompt(Character(name="Mara"), memories=[])


def test_examples_section_omitted_when_empty():
    character = Character(name="Mara")

    assert EXAMPLES_HEADER not in build_system_prompt(character, examples=PromptExamples())
    prompt = build_system_prompt(character, examples=PromptExamples(dialogue='"Hi," she says.'))
    assert EXAMPLES_HEADER in prompt
    assert '"Hi," she says.' in prompt
    assert "Narration example" not in prompt


def test_load_prompt_examples(tmp_path):
    (tmp_path / "dialogue_example.txt").write_text("Some dialogue\n", encoding="utf-8")

    examples = load_prompt_examples(tmp_path)

    assert examples.dialogue == "Some dialogue"
    assert examples.narration == ""
    assert load_prompt_examples(tmp_path / "missing").empty


def test_format_history_accepts_dicts():
    history = format_history([
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ])
    assert history == "Human: Hi\nAssistant: Hello"


def test_build_prompt_ends_with_current_turn():
    messages = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
        {"role": "user", "content": "How are you?"},
    ]
    prompt = build_prompt(Character(name="Mara"), messages)

    assert prompt.endswith("Human: How are you?")
    assert "Conversation so far:\nHuman: Hi\nAssistant: Hello" in prompt
    assert prompt.count("How are you?") == 1


def test_build_prompt_single_message_has_no_history():
    prompt = build_prompt(Character(name="Mara"), [{"role": "user", "content": "Hi"}])

    assert "Conversation so far" not in prompt
    assert prompt.endswith("Human: Hi")


def test_build_prompt_requires_messages():
    with pytest.raises(ValueError):
        build_prompt(Character(name="Mara"), [])
