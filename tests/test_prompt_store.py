from __future__ import annotations

import pytest

from deepresearch.services.prompt_store import get_prompt, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("engine.system_prompt", today="2026-02-21")
    assert "2026-02-21" in prompt


def test_list_templates_are_joined_by_newlines():
    template = get_prompt("analyzer.prompt")
    assert template.startswith("Research question: $query\nResearch depth: $depth")


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError, match="Prompt key not found"):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="Missing template value 'query'"):
        render_prompt("extract.prompt")


def test_section_key_is_not_a_prompt():
    with pytest.raises(TypeError):
        get_prompt("reports")
