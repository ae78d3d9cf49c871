from tracemind.brain.diagnostics import is_weird, log_trace_intent, summarize_trace_intent
from tracemind.brain.intent import create_empty_trace_intent
from tracemind.brain.synthesis import TurnSignals, synthesize


def test_is_weird():
    assert not is_weird(create_empty_trace_intent())
    assert not is_weird(synthesize(TurnSignals(current_message="tell me a story about rain")))

    missing_mode = create_empty_trace_intent()
    missing_mode.mode = None
    assert is_weird(missing_mode)

    truncatable = create_empty_trace_intent()
    truncatable.mode = "longform"
    assert is_weird(truncatable)


def test_disabled_logging_emits_nothing(log_records):
    intent = create_empty_trace_intent()
    intent.intent_type = None

    assert log_trace_intent(intent, enabled=False, request_id="req-1") is True
    assert log_records == []


def test_enabled_logging_binds_summary(log_records):
    intent = synthesize(TurnSignals(current_message="play something", music_requested=True))

    weird = log_trace_intent(intent, enabled=True, request_id="req-2", user_id="u-1", model="m")

    assert weird is False
    assert len(log_records) == 1
    record = log_records[0]
    assert record["level"].name == "INFO"
    summary = record["extra"]["trace_intent"]
    assert summary["request_id"] == "req-2"
    assert summary["primary_mode"] == "studios"
    assert summary["constraints"]["suppress_soundscapes"] is True


def test_weird_directive_logs_warning(log_records):
    intent = create_empty_trace_intent()
    intent.mode = "longform"

    assert log_trace_intent(intent, enabled=True, request_id="req-3") is True
    assert [r["level"].name for r in log_records] == ["INFO", "WARNING"]
    assert "Weird directive req-3" in log_records[-1]["message"]


def test_summary_fields():
    intent = synthesize(TurnSignals(current_message="hey", doorways={"candidates": ["rest"]}))
    summary = summarize_trace_intent(intent, route="/chat")

    assert summary["route"] == "/chat"
    assert summary["doorway_hint"] == "rest"
    assert summary["signals"]["crisis"] == {"is_crisis": False}
