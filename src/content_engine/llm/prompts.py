"""Prompt templates for each generated artifact type."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from content_engine.errors import ValidationError
from content_engine.text.language import language_name

_TOKEN_RE = re.compile(r"\{\{([A-Z_]+)\}\}")

SUMMARY_SYSTEM_PROMPT = """\
Generate a concise summary of the given text in {{LANGUAGE}}, \
maximum length {{MAX_LENGTH}} characters.
Reply with the summary only, written as complete sentences.\
"""

TAGS_SYSTEM_PROMPT = """\
Generate up to {{MAX_TAGS}} tags in {{LANGUAGE}}, separated by commas.
Each tag is a short keyword or phrase of at most 20 characters.
Reply with the comma-separated tags only.\
"""

CATEGORY_SYSTEM_PROMPT = """\
Select the most appropriate category for the given content from this list:
{{CATEGORIES}}
Reply with exactly one category name from the list and nothing else.\
"""

SEO_SYSTEM_PROMPT = """\
Generate an SEO meta description (max {{SEO_LENGTH}} chars) and keywords in {{LANGUAGE}}.
Reply with a JSON object: {"description": "...", "keywords": ["...", "..."]}\
"""

SYSTEM_PROMPTS: dict[str, str] = {
    "summary": SUMMARY_SYSTEM_PROMPT,
    "tags": TAGS_SYSTEM_PROMPT,
    "category": CATEGORY_SYSTEM_PROMPT,
    "seo": SEO_SYSTEM_PROMPT,
}

USER_PROMPTS: dict[str, str] = {
    "summary": "Summarize the following text in at most {{MAX_LENGTH}} characters:\n\n{{CONTENT}}",
    "tags": "Generate tags for the following text:\n\n{{CONTENT}}",
    "category": "Choose a category for the following text:\n\n{{CONTENT}}",
    "seo": "Generate SEO metadata for the following text:\n\n{{CONTENT}}",
}

STRONGER_CONSTRAINT_INSTRUCTION = (
    "\n\nThe previous answer ignored the required format. Follow every instruction "
    "strictly and reply with the requested output only."
)
REFINEMENT_INSTRUCTION = (
    "\n\nThe previous answer was close. Make it more precise, complete and faithful "
    "to the text."
)


@dataclass(slots=True, frozen=True)
class PromptContext:
    """Values substituted into prompt templates."""

    language: str = "en"
    max_length: int = 100
    max_tags: int = 5
    categories: tuple[str, ...] = ()
    seo_length: int = 200

    def tokens(self) -> dict[str, str]:
        return {
            "LANGUAGE": language_name(self.language),
            "MAX_LENGTH": str(self.max_length),
            "MAX_TAGS": str(self.max_tags),
            "CATEGORIES": "\n".join(self.categories),
            "SEO_LENGTH": str(self.seo_length),
        }


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{{TOKEN}}`` placeholders in one pass; unknown tokens are an error."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in values:
            raise ValidationError(f"Unknown prompt token: {{{{{name}}}}}")
        return values[name]

    return _TOKEN_RE.sub(_replace, template)


def build_system_prompt(
    artifact_type: str,
    context: PromptContext,
    overrides: Mapping[str, str] | None = None,
) -> str:
    template = (overrides or {}).get(artifact_type) or SYSTEM_PROMPTS.get(artifact_type)
    if template is None:
        raise ValidationError(f"Unsupported artifact type: {artifact_type!r}")
    return render_template(template, context.tokens())


def build_user_prompt(artifact_type: str, content: str, context: PromptContext) -> str:
    template = USER_PROMPTS.get(artifact_type)
    if template is None:
        raise ValidationError(f"Unsupported artifact type: {artifact_type!r}")
    return render_template(template, {**context.tokens(), "CONTENT": content})
