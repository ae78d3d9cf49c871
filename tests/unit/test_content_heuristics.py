import pytest

from tracemind.heuristics.content import (
    extract_topic_keywords,
    has_content,
    has_emotional_intensity,
    is_acknowledgement,
)
from tracemind.heuristics.importance import disclosure_signals, has_importance_signal
from tracemind.heuristics.moves import MoveType, classify_move_type, fallback_reply, is_open_probe


@pytest.mark.parametrize("message", ["ok", "Yeah.", "thanks!", "hey", "", None, "   "])
def test_acknowledgements_have_no_content(message):
    assert has_content(message) is False


@pytest.mark.parametrize(
    "message",
    ["not great", "exhausted", "sad", "work?", "my dad called"],
)
def test_substantive_turns_have_content(message):
    assert has_content(message) is True


def test_is_acknowledgement_matches_whole_message_only():
    assert is_acknowledgement("okay")
    assert not is_acknowledgement("okay but my boss yelled at me")


def test_topic_keywords_follow_rule_order_without_duplicates():
    topics = extract_topic_keywords("My mom and dad keep asking about my job and my job")
    assert topics == ["work", "family"]
    assert extract_topic_keywords("") == []


def test_topic_keywords_use_word_boundaries():
    assert "breakup" not in extract_topic_keywords("the next exam")
    assert "school" in extract_topic_keywords("the next exam")


def test_emotional_intensity():
    assert has_emotional_intensity("I'm so overwhelmed")
    assert has_emotional_intensity("I'm really scared")
    assert has_emotional_intensity("I can’t handle this")
    assert not has_emotional_intensity("I'm a bit tired")
    assert not has_emotional_intensity(None)


def test_disclosure_signals_and_importance():
    text = "My dog is named Biscuit and I just moved"
    assert set(disclosure_signals(text)) >= {"named_relation", "proper_name", "recent_event"}

    messages = [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "x" * 300},
        {"role": "user", "content": text},
    ]
    assert has_importance_signal(messages)
    assert not has_importance_signal(messages[:2])


def test_long_user_message_counts_as_important():
    messages = [{"role": "user", "content": "a" * 101}]
    assert has_importance_signal(messages)
    assert not has_importance_signal(messages, long_message_chars=200)


def test_classify_move_type():
    assert classify_move_type("What would you like to talk about?") == MoveType.OPEN_PROBE
    assert classify_move_type("That's valid.") == MoveType.VALIDATE
    assert classify_move_type("Did the new schedule at the bakery help at all?") == (
        MoveType.SPECIFIC_FOLLOWUP
    )
    assert classify_move_type("Maybe a short walk.") == MoveType.SUGGEST
    assert classify_move_type("I'm here.") == MoveType.CHECKIN
    assert classify_move_type(None) == MoveType.CHECKIN
    assert is_open_probe("how can I help you")


def test_fallback_reply_prefers_topics_then_rotates_presence_lines():
    assert fallback_reply(["finances", "sleep"]).startswith("sleep's been tough")
    assert fallback_reply([], 0) == "I'm here."
    assert fallback_reply([], 5) == "mm. take your time."
