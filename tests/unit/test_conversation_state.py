from datetime import timedelta

from tracemind.heuristics.moves import MoveType
from tracemind.state.conversation_state import ConversationStateStore, Stage


def _store(clock, **kwargs):
    return ConversationStateStore(clock=clock, **kwargs)


def test_new_state_starts_in_arrival(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")

    assert state.stage == Stage.ARRIVAL
    assert state.turn_count == 0
    assert state.last_move_type is None
    assert store.get_or_create("conv-1") is state
    assert len(store) == 1


def test_content_turn_moves_opening_to_sharing_and_establishes_topic(clock):
    store = _store(clock)
    state = store.get_or_create("conv-nyla")
    state.stage = Stage.OPENING

    had_content = store.advance(state, "my daughter Nyla has been having a hard time at school")

    assert had_content is True
    assert state.stage == Stage.SHARING
    assert state.topic_established is True
    assert "family" in state.last_topic_keywords
    assert "school" in state.last_topic_keywords


def test_single_turn_never_skips_two_stages(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")

    store.advance(state, "work has been rough this week")
    assert state.stage == Stage.SHARING

    store.advance(state, "my boss keeps moving deadlines")
    assert state.stage == Stage.EXPLORING


def test_acknowledgements_do_not_advance_until_turn_threshold(clock):
    store = _store(clock, auto_advance_turns=3)
    state = store.get_or_create("conv-1")

    assert store.advance(state, "ok") is False
    assert state.stage == Stage.ARRIVAL

    state.turn_count = 3
    assert store.advance(state, "yeah") is False
    assert state.stage == Stage.SHARING
    assert state.topic_established is False


def test_emotional_intensity_forces_processing_from_any_stage(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")
    state.stage = Stage.CLOSING

    store.advance(state, "I can't stop thinking about it")

    assert state.stage == Stage.PROCESSING


def test_record_response_tracks_moves_turns_and_probe_streak(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")

    assert store.record_response(state, "What's been on your mind?") == MoveType.OPEN_PROBE
    assert store.record_response(state, "How are you feeling today?") == MoveType.OPEN_PROBE
    assert state.consecutive_probes == 2

    assert store.record_response(state, "It sounds like a heavy week.") == MoveType.REFLECT
    assert state.consecutive_probes == 0
    assert state.turn_count == 3
    assert state.last_move_type == MoveType.REFLECT


def test_active_run_expires_when_read_after_ttl(clock):
    store = _store(clock, run_ttl=timedelta(minutes=12))
    state = store.get_or_create("conv-1")

    run = store.set_active_run(state, anchor_label="late night jazz")
    assert run.mode == "studios"
    assert run.anchor_label == "late night jazz"

    clock.advance(minutes=11)
    assert store.get_active_run(state).expired is False

    clock.advance(minutes=13)
    expired = store.get_active_run(state)
    assert expired.expired is True
    assert state.active_run is None
    assert store.get_active_run(state) is None


def test_touching_same_mode_refreshes_run(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")
    first = store.set_active_run(state, "studios")
    store.increment_non_run_turns(state)

    clock.advance(minutes=10)
    touched = store.set_active_run(state, "studios")

    assert touched.started_at == first.started_at
    assert touched.last_touched_at == clock.current
    assert state.consecutive_non_run_turns == 0
    assert store.clear_active_run(state) == "manual_clear"
    assert state.active_run is None


def test_pending_followup_expires_lazily(clock):
    store = _store(clock, followup_ttl=timedelta(minutes=10))
    state = store.get_or_create("conv-1")

    followup = store.set_pending_followup(state, activity_id="breath-1", activity_name="Breathing")
    assert followup.activity_name == "Breathing"
    assert followup.type == "activity_reflection"

    clock.advance(minutes=5)
    assert store.get_pending_followup(state).expired is False

    clock.advance(minutes=6)
    assert store.get_pending_followup(state).expired is True
    assert store.get_pending_followup(state) is None


def test_sweep_only_evicts_idle_states(clock):
    store = _store(clock, state_ttl=timedelta(minutes=30))
    store.get_or_create("idle")
    clock.advance(minutes=20)
    store.get_or_create("busy")
    clock.advance(minutes=15)

    assert store.sweep() == 1
    assert "idle" not in store
    assert "busy" in store


def test_separate_stores_never_share_state(clock):
    first = _store(clock)
    second = _store(clock)
    first.get_or_create("conv-1").stage = Stage.EXPLORING

    assert second.get_or_create("conv-1").stage == Stage.ARRIVAL


def test_snapshot_is_a_detached_copy(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")
    store.advance(state, "I've been so stressed about rent")

    snapshot = store.snapshot(state)
    snapshot["last_topic_keywords"].append("mutated")

    assert snapshot["stage"] == "SHARING"
    assert snapshot["topic_established"] is True
    assert "mutated" not in state.last_topic_keywords


def test_state_prompt_warns_after_open_probe(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")
    store.advance(state, "my sister moved away last month")
    store.record_response(state, "Anything else you'd like to share?")

    prompt = store.build_state_prompt(state, had_content=True)

    assert "Stage: SHARING" in prompt
    assert "Last Move Type: OPEN_PROBE" in prompt
    assert "Do not ask another generic open question." in prompt
    assert "Stay with: family, life_change." in prompt


def test_probe_rules_and_fallback(clock):
    store = _store(clock)
    state = store.get_or_create("conv-1")
    store.advance(state, "my job is draining me")

    assert store.violates_probe_rules("What's on your mind?", state, had_content=True)
    assert not store.violates_probe_rules("That sounds exhausting.", state, had_content=True)
    assert store.fallback_response(state).startswith("work stuff")
