from services.llm_generate.app.prompts import (
    FOUND_IN_INTERNET,
    check_found_in_internet,
    check_negative_answer,
    format_chat_context_prompt,
    format_chat_summary_prompt,
    negative_answer_classifier,
)
from shared.models import Exchange


def test_context_prompt_numbers_non_blank_blocks() -> None:
    prompt = format_chat_context_prompt(["first", "  ", "second"], None, True)
    assert "[1] first" in prompt
    assert "[2] second" in prompt
    assert "[3]" not in prompt
    assert FOUND_IN_INTERNET in prompt


def test_context_prompt_without_content_or_own_knowledge() -> None:
    prompt = format_chat_context_prompt([], "  ", False)
    assert "no content available" in prompt
    assert "expert in" not in prompt
    assert "Do not use outside knowledge" in prompt


def test_summary_prompt_renders_transcript() -> None:
    prompt = format_chat_summary_prompt(
        [Exchange(role="user", text="Hi?"), Exchange(role="bot", text="Hello.")]
    )
    assert prompt.endswith("User: Hi?\nAssistant: Hello.")


def test_negative_classifier_matches_evasive_answers() -> None:
    assert check_negative_answer("I don't know.")
    assert check_negative_answer("Sorry, I do not know that.")
    assert check_negative_answer("I’m not sure")
    assert check_negative_answer("That is not mentioned in the documents.")
    assert not check_negative_answer("Alpha is the first letter.")
    assert not check_negative_answer("")


def test_custom_negative_patterns() -> None:
    is_negative = negative_answer_classifier([r"\bno idea\b"])
    assert is_negative("No idea, sorry")
    assert not is_negative("I don't know")


def test_found_in_internet_sentinel() -> None:
    assert check_found_in_internet(f"Canberra. {FOUND_IN_INTERNET}")
    assert not check_found_in_internet("Canberra.")
    assert not check_found_in_internet(None)
