import asyncio

import pytest

from tests.utils.factories import FakeClock
from tracemind.memory.core_memory import CoreMemory, EmotionEntry
from tracemind.memory.sessions import (
    build_greeting,
    check_and_rotate_session,
    compute_continuity_vector,
    gap_category,
)
from tracemind.storage.service import MemoryStore


def _store_with_conversation():
    clock = FakeClock()
    store = MemoryStore(clock=clock)
    conversation = asyncio.run(store.ensure_conversation(None))
    return clock, store, conversation


def test_short_gap_keeps_session():
    clock, store, conversation = _store_with_conversation()
    clock.advance(hours=10, minutes=59)

    result = asyncio.run(check_and_rotate_session(store, conversation))

    assert result.rotated is False
    assert result.session_id == conversation.current_session_id
    assert result.gap_hours == 10
    assert result.gap_category == "same_day"
    assert result.previous_session_id is None


def test_long_gap_starts_new_session():
    clock, store, conversation = _store_with_conversation()
    asyncio.run(store.save_message(conversation.conversation_id, "user", "hello there"))
    clock.advance(hours=30)
    conversation = asyncio.run(store.ensure_conversation(conversation.conversation_id))

    result = asyncio.run(check_and_rotate_session(store, conversation, gap_hours_threshold=24))

    assert result.rotated is True
    assert result.session_id != conversation.current_session_id
    assert result.previous_session_id == conversation.current_session_id
    assert result.gap_hours == 30
    assert result.gap_category == "next_day"

    record = store.get_mirrored_conversation(conversation.conversation_id).record
    assert record.current_session_id == result.session_id
    assert record.session_started_at == clock()
    assert record.user_msg_count_since_summary == 0
    assert record.user_msg_count_since_extraction == 1


def test_gap_exactly_at_threshold_does_not_rotate():
    clock, store, conversation = _store_with_conversation()
    clock.advance(hours=24)

    assert asyncio.run(check_and_rotate_session(store, conversation)).rotated is False


@pytest.mark.parametrize(
    "hours, category",
    [(0, "same_day"), (24, "same_day"), (25, "next_day"), (48, "next_day"), (49, "extended_absence")],
)
def test_gap_categories(hours, category):
    assert gap_category(hours) == category


def test_continuity_vector_counts_theme_mentions():
    memory = CoreMemory(
        themes=["work", "sleep", "family"],
        emotion_timeline=[
            EmotionEntry(emotion="anxious", timestamp="2024-05-01"),
            EmotionEntry(emotion="relieved", timestamp="2024-05-02"),
        ],
    )
    messages = [
        {"role": "user", "content": "Sleep was bad again"},
        {"role": "user", "content": "Work is fine"},
        {"role": "user", "content": "still no sleep"},
    ]

    vector = compute_continuity_vector(memory, messages)

    assert vector.primary_theme == "sleep"
    assert vector.recent_emotion == "relieved"


def test_continuity_vector_ties_keep_first_theme():
    memory = CoreMemory(themes=["work", "sleep"])
    messages = [{"content": "work"}, {"content": "sleep"}]

    assert compute_continuity_vector(memory, messages).primary_theme == "work"
    assert compute_continuity_vector(memory, []).primary_theme == "general"
    assert compute_continuity_vector(None, messages).recent_emotion is None


def test_greetings():
    assert build_greeting(5) == "Hey. I'm here."
    assert build_greeting(5, "tired") == "Hey. Still feeling tired, or has it shifted?"
    assert build_greeting(72, "tired") == "Hey. I'm here. Where do you want to start today?"
