from loguru import logger as loguru_logger

from tracemind.utils.exceptions import (
    CompletionError,
    ExceptionHandler,
    StorageError,
    TraceMindError,
    ValidationError,
)


def test_log_exception_includes_structured_fields():
    error = TraceMindError(
        message="Test error",
        error_code="TEST_ERROR",
        context={"key": "value"},
    )

    records = []

    def sink(message):
        records.append(message.record)

    handler_id = loguru_logger.add(sink)
    try:
        ExceptionHandler.log_exception(error, logger=loguru_logger)
    finally:
        loguru_logger.remove(handler_id)

    assert records, "No log records were captured"

    record = records[-1]
    assert record["extra"].get("exception_data") == error.to_dict()
    assert record["extra"].get("error_type") == "TraceMindError"


def test_log_exception_merges_extra_context_and_level():
    error = StorageError("insert failed", operation="insert_messages")

    records = []
    handler_id = loguru_logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        ExceptionHandler.log_exception(
            error,
            logger=loguru_logger,
            level="WARNING",
            extra_context={"conversation_id": "c-1"},
        )
    finally:
        loguru_logger.remove(handler_id)

    record = records[-1]
    assert record["level"].name == "WARNING"
    context = record["extra"]["exception_data"]["context"]
    assert context == {"operation": "insert_messages", "conversation_id": "c-1"}


def test_log_exception_handles_foreign_exceptions():
    records = []
    handler_id = loguru_logger.add(lambda message: records.append(message.record))
    try:
        ExceptionHandler.log_exception(KeyError("missing"), logger=loguru_logger)
    finally:
        loguru_logger.remove(handler_id)

    assert records[-1]["extra"]["error_type"] == "KeyError"
    assert records[-1]["extra"]["exception_data"]["error_code"] is None


def test_subclasses_carry_codes_and_context():
    completion = CompletionError("bad json", model="gpt-4o-mini")
    validation = ValidationError("wrong shape", field="goals")

    assert completion.error_code == "COMPLETION_ERROR"
    assert completion.context["model"] == "gpt-4o-mini"
    assert validation.to_dict()["context"] == {"field": "goals"}
    assert "wrong shape" in str(validation)
    assert isinstance(validation, TraceMindError)
