from __future__ import annotations

import allure
import pytest

from content_engine.text.language import detect_language, language_name, resolve_language

pytestmark = [
    allure.epic("Content Generation"),
    allure.feature("Prompting"),
]


@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("今天天气很好，我们去公园散步吧。", "zh"),
        ("これはひらがなとカタカナのテストです", "ja"),
        ("안녕하세요 반갑습니다", "ko"),
        ("Привет, как дела?", "ru"),
        ("Hello world, nothing exotic here.", "en"),
        ("", "en"),
    ],
)
def test_detect_language_by_script_share(content: str, expected: str) -> None:
    assert detect_language(content) == expected


def test_detection_only_samples_leading_characters() -> None:
    content = "a" * 100 + "中文内容" * 100

    assert detect_language(content) == "en"


def test_resolve_language_keeps_configured_code() -> None:
    assert resolve_language("fr", "今天天气很好") == "fr"
    assert resolve_language("auto", "今天天气很好") == "zh"


def test_language_name_defaults_to_english() -> None:
    assert language_name("zh") == "中文"
    assert language_name("xx") == "English"
