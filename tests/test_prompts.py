from __future__ import annotations

import allure
import pytest

from content_engine.errors import ValidationError
from content_engine.llm.prompts import (
    SYSTEM_PROMPTS,
    USER_PROMPTS,
    PromptContext,
    build_system_prompt,
    build_user_prompt,
    render_template,
)

pytestmark = [
    allure.epic("Content Generation"),
    allure.feature("Prompting"),
]


@pytest.mark.parametrize("artifact_type", sorted(SYSTEM_PROMPTS))
def test_every_builtin_template_resolves_all_tokens(artifact_type: str) -> None:
    context = PromptContext(categories=("Tech", "Sports"))

    system_prompt = build_system_prompt(artifact_type, context)
    user_prompt = build_user_prompt(artifact_type, "Body text.", context)

    assert "{{" not in system_prompt
    assert "{{" not in user_prompt
    assert user_prompt.endswith("Body text.")


def test_system_prompt_substitutes_language_name_and_limits() -> None:
    context = PromptContext(language="zh", max_length=80, max_tags=3)

    assert "中文" in build_system_prompt("summary", context)
    assert "80" in build_system_prompt("summary", context)
    assert "up to 3 tags" in build_system_prompt("tags", context)


def test_category_prompt_lists_categories_one_per_line() -> None:
    prompt = build_system_prompt("category", PromptContext(categories=("Tech", "Sports")))

    assert "Tech\nSports" in prompt


def test_seo_prompt_keeps_literal_json_braces() -> None:
    prompt = build_system_prompt("seo", PromptContext(seo_length=150))

    assert '{"description": "...", "keywords": ["...", "..."]}' in prompt
    assert "150" in prompt


def test_override_replaces_builtin_template() -> None:
    prompt = build_system_prompt(
        "summary",
        PromptContext(language="en", max_length=50),
        {"summary": "Write {{MAX_LENGTH}} chars in {{LANGUAGE}}."},
    )

    assert prompt == "Write 50 chars in English."


def test_unknown_token_is_rejected() -> None:
    with pytest.raises(ValidationError, match="UNKNOWN"):
        render_template("Hello {{UNKNOWN}}", {"LANGUAGE": "English"})


def test_content_is_substituted_once() -> None:
    prompt = build_user_prompt("tags", "Text mentioning {{LANGUAGE}} literally.", PromptContext())

    assert prompt.endswith("Text mentioning {{LANGUAGE}} literally.")


def test_unsupported_artifact_type() -> None:
    with pytest.raises(ValidationError):
        build_system_prompt("poem", PromptContext())
    assert "poem" not in USER_PROMPTS
