import asyncio
import json

from tests.utils.factories import FakeClock, FakeCompletion
from tracemind.agents.prompts import COMPRESSION_PROMPT, SESSION_SUMMARY_PROMPT
from tracemind.brain.synthesis import TurnSignals
from tracemind.config.settings import TraceMindSettings
from tracemind.core.companion import TraceMind
from tracemind.heuristics.moves import MoveType
from tracemind.memory.context import COMPRESSION_HEADER, MEMORY_HEADER
from tracemind.state.conversation_state import Stage

FLAT_DAY = "work was long again today and I feel kind of flat about it"


class PromptRoutedCompletion:
    """Answers extraction, summary and compression requests by prompt."""

    def __init__(self, extraction=None, summary="", compression=""):
        self.extraction = extraction or {}
        self.summary = summary
        self.compression = compression
        self.calls = []

    async def complete(self, system_prompt, messages, *, json_mode=False, temperature=None, max_tokens=None):
        self.calls.append(system_prompt)
        if json_mode:
            return json.dumps(self.extraction)
        if system_prompt == SESSION_SUMMARY_PROMPT:
            return self.summary
        if system_prompt.startswith(COMPRESSION_PROMPT):
            return self.compression
        raise AssertionError(f"unexpected prompt: {system_prompt[:40]}")


def _trace(completion=None, **settings):
    clock = FakeClock()
    mind = TraceMind(settings=TraceMindSettings(**settings), completion=completion, clock=clock)
    return mind, clock


def test_first_turn_creates_conversation_and_state():
    mind, _ = _trace()

    async def scenario():
        return await mind.prepare_turn(None, "hi")

    ctx = asyncio.run(scenario())

    assert mind.store.memory_only
    assert mind.completion is None
    assert ctx.state.stage == Stage.ARRIVAL
    assert ctx.had_content is False
    assert ctx.rotation.rotated is False
    assert ctx.directive.intent_type == "other"
    assert ctx.directive.signals.conversation_state["stage"] == "ARRIVAL"
    assert "Stage: ARRIVAL" in ctx.state_prompt
    assert ctx.greeting is None


def test_sharing_turn_establishes_topic():
    mind, _ = _trace()

    async def scenario():
        first = await mind.prepare_turn(None, "hey")
        await mind.record_response(first.conversation_id, "Hey. What's on your mind?")
        mind.get_or_create_conversation_state(first.conversation_id).stage = Stage.OPENING
        return await mind.prepare_turn(
            first.conversation_id, "my daughter Nyla has been really quiet since school started"
        )

    ctx = asyncio.run(scenario())

    assert ctx.state.stage == Stage.SHARING
    assert ctx.state.topic_established is True
    assert ctx.had_content is True
    assert ctx.state.last_move_type == MoveType.OPEN_PROBE
    assert "family" in ctx.state.last_topic_keywords
    assert "Do not ask another generic open question." in ctx.state_prompt
    assert ctx.directive.signals.conversation_state["topic_established"] is True


def test_record_response_counts_turns_and_stores_reply():
    mind, _ = _trace()

    async def scenario():
        ctx = await mind.prepare_turn(None, "hello")
        move = await mind.record_response(ctx.conversation_id, "It sounds like a long day.", ctx.session_id)
        messages = await mind.store.fetch_recent_messages(ctx.conversation_id)
        return ctx, move, messages

    ctx, move, messages = asyncio.run(scenario())

    assert move == MoveType.REFLECT
    assert ctx.state.turn_count == 1
    assert messages[-1]["role"] == "assistant"
    assert messages[-1]["session_id"] == ctx.session_id


def test_fifth_user_message_triggers_background_extraction():
    completion = PromptRoutedCompletion(extraction={"user_facts": ["works long shifts"], "themes": ["work"]})
    mind, _ = _trace(completion)

    async def scenario():
        cid = None
        for _ in range(5):
            ctx = await mind.prepare_turn(cid, FLAT_DAY)
            cid = ctx.conversation_id
        await mind.drain()
        after = await mind.prepare_turn(cid, "thanks for listening")
        return cid, after

    cid, after = asyncio.run(scenario())

    assert len(completion.calls) == 1
    memory = asyncio.run(mind.store.fetch_core_memory(cid))
    assert memory.user_facts == ["works long shifts"]
    assert mind.store.get_mirrored_conversation(cid).record.user_msg_count_since_extraction == 1
    assert after.memory_context.startswith(MEMORY_HEADER)
    assert "Facts: works long shifts" in after.directive.selected_context.memory_bullets
    assert mind.pending_tasks == 0


def test_long_gap_rotates_session_and_summarizes_previous_one():
    completion = PromptRoutedCompletion(
        extraction={"themes": ["work"], "emotion_timeline": [{"emotion": "flat"}]},
        summary="They described long, flat work days.",
    )
    mind, clock = _trace(completion)

    async def scenario():
        ctx = None
        for _ in range(5):
            ctx = await mind.prepare_turn(ctx.conversation_id if ctx else None, FLAT_DAY)
        await mind.drain()
        first_session = ctx.session_id
        clock.advance(hours=30)
        returned = await mind.prepare_turn(ctx.conversation_id, "back again, work is still a lot")
        await mind.drain()
        return first_session, returned

    first_session, returned = asyncio.run(scenario())

    assert returned.rotation.rotated is True
    assert returned.rotation.previous_session_id == first_session
    assert returned.session_id != first_session
    assert returned.continuity.primary_theme == "work"
    assert returned.continuity.recent_emotion == "flat"
    assert returned.greeting == "Hey. I'm here. Where do you want to start today?"

    summaries = asyncio.run(mind.store.fetch_session_summaries(returned.conversation_id))
    assert summaries[0].session_id == first_session
    assert summaries[0].summary == "They described long, flat work days."


def test_long_conversation_is_compressed_into_context():
    completion = PromptRoutedCompletion(compression="They covered a hard month at the bakery and a move.")
    mind, _ = _trace(completion)

    async def scenario():
        conversation = await mind.store.ensure_conversation(None)
        cid = conversation.conversation_id
        for index in range(44):
            role = "user" if index % 2 == 0 else "assistant"
            await mind.store.save_message(cid, role, f"earlier message {index}")
        mind.store.get_mirrored_conversation(cid).record.user_msg_count_since_extraction = 0
        ctx = await mind.prepare_turn(cid, "so where does that leave me")
        await mind.drain()
        return ctx

    ctx = asyncio.run(scenario())

    assert ctx.compression.is_new is True
    assert ctx.compression.covers_message_count == 25
    assert len(ctx.recent_messages) == 20
    assert COMPRESSION_HEADER in ctx.memory_context
    assert "a hard month at the bakery" in ctx.memory_context


def test_crisis_signal_overrides_music_request():
    mind, _ = _trace()

    async def scenario():
        return await mind.prepare_turn(
            None,
            "play something, I can't do this anymore",
            signals={"is_crisis": True, "music_requested": True},
        )

    ctx = asyncio.run(scenario())

    assert ctx.directive.mode == "crisis"
    assert ctx.directive.primary_mode == "crisis"
    assert ctx.directive.constraints.allow_activities == "never"


def test_music_request_uses_studios_gate():
    mind, _ = _trace()

    async def scenario():
        return await mind.prepare_turn(None, "hey", signals=TurnSignals(music_requested=True))

    directive = asyncio.run(scenario()).directive

    assert directive.primary_mode == "studios"
    assert directive.constraints.suppress_soundscapes is True
    assert directive.selected_context.memory_bullets == ['"hey"']


def test_directive_logging_follows_settings(log_records):
    mind, _ = _trace(intent={"log_enabled": True})

    mind.synthesize_turn_directive({"current_message": "tell me a story"}, request_id="req-9")

    logged = [r for r in log_records if "trace_intent" in r["extra"]]
    assert logged[0]["extra"]["trace_intent"]["request_id"] == "req-9"
    assert logged[0]["extra"]["trace_intent"]["intent_type"] == "story"


def test_provider_error_during_extraction_is_logged_not_raised(log_records):
    mind, _ = _trace(FakeCompletion(RuntimeError("provider exploded")))

    async def scenario():
        cid = None
        for _ in range(5):
            ctx = await mind.prepare_turn(cid, FLAT_DAY)
            cid = ctx.conversation_id
        await mind.close()
        return cid

    cid = asyncio.run(scenario())

    assert asyncio.run(mind.store.fetch_core_memory(cid)) is None
    assert any(
        r["level"].name == "WARNING" and "Extraction failed" in r["message"]
        for r in log_records
    )
    assert mind.store.get_mirrored_conversation(cid).record.user_msg_count_since_extraction == 5
    assert mind.locks.held() == []


def test_unexpected_background_failure_is_logged(monkeypatch, log_records):
    mind, _ = _trace(PromptRoutedCompletion())

    async def broken_extraction(conversation_id, messages):
        raise RuntimeError("store exploded")

    monkeypatch.setattr(mind.memory, "run_extraction", broken_extraction)

    async def scenario():
        cid = None
        for _ in range(5):
            ctx = await mind.prepare_turn(cid, FLAT_DAY)
            cid = ctx.conversation_id
        await mind.drain()

    asyncio.run(scenario())

    assert any(
        r["level"].name == "ERROR" and "Background task extraction" in r["message"]
        for r in log_records
    )
    assert mind.pending_tasks == 0


def test_compression_timeout_does_not_abort_the_turn(log_records):
    class TimingOutCompletion:
        async def complete(self, system_prompt, messages, **kwargs):
            raise asyncio.TimeoutError("completion timed out")

    mind, _ = _trace(TimingOutCompletion())

    async def scenario():
        conversation = await mind.store.ensure_conversation(None)
        cid = conversation.conversation_id
        for index in range(44):
            role = "user" if index % 2 == 0 else "assistant"
            await mind.store.save_message(cid, role, f"earlier message {index}")
        mind.store.get_mirrored_conversation(cid).record.user_msg_count_since_extraction = 0
        ctx = await mind.prepare_turn(cid, "so where does that leave me")
        await mind.drain()
        return ctx

    ctx = asyncio.run(scenario())

    assert ctx.compression is None
    assert len(ctx.recent_messages) == 45
    assert COMPRESSION_HEADER not in ctx.memory_context
    assert any("Compression failed" in r["message"] for r in log_records)
    assert mind.locks.held() == []


def test_compression_coverage_keeps_up_past_the_fetch_window():
    completion = PromptRoutedCompletion(compression="They kept talking about the allotment and the weather.")
    mind, _ = _trace(completion, compression={"fetch_limit": 60}, database={"max_messages_in_memory": 60})

    async def scenario():
        ctx = await mind.prepare_turn(None, "hello")
        cid = ctx.conversation_id
        for index in range(75):
            await mind.record_response(cid, f"reply {index}", ctx.session_id)
            ctx = await mind.prepare_turn(cid, f"turn {index}")
        await mind.drain()
        return ctx

    ctx = asyncio.run(scenario())

    assert ctx.compression.covers_message_count == 129
    assert [m["position"] for m in ctx.recent_messages] == list(range(131, 151))
    assert ctx.compression.compression_context in ctx.memory_context


def test_sweep_evicts_idle_states():
    mind, clock = _trace()
    mind.get_or_create_conversation_state("c-1")
    assert mind.advance_conversation_state("c-2", "my boss yelled at me") is True

    clock.advance(minutes=31)

    assert mind.sweep() == 2
