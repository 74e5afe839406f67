from __future__ import annotations

from script_sandbox import ErrorKind, Outcome, OutputLevel, OutputLine
from script_sandbox.execution.aggregator import aggregate


def test_lines_are_renumbered_in_given_order() -> None:
    captured = [
        OutputLine(level=OutputLevel.LOG, rendered="a", sequence=7),
        ("warn", "b"),
    ]
    result = aggregate(
        request_id="r1",
        captured=captured,
        thrown=[],
        outcome=Outcome.COMPLETED,
        elapsed_ms=1.5,
    )

    assert [(line.level, line.rendered, line.sequence) for line in result.output] == [
        (OutputLevel.LOG, "a", 0),
        (OutputLevel.WARN, "b", 1),
    ]
    assert result.ok
    assert result.duration_ms == 1.5


def test_completed_with_errors_becomes_threw() -> None:
    result = aggregate(
        request_id="r2",
        captured=[],
        thrown=["late failure"],
        outcome=Outcome.COMPLETED,
        elapsed_ms=2,
        return_value_rendered="3",
    )

    assert result.outcome is Outcome.THREW
    assert result.error_kind is ErrorKind.RUNTIME_THROW
    assert result.thrown_errors == ("late failure",)


def test_threw_without_message_gets_placeholder() -> None:
    result = aggregate(request_id="r3", captured=[], thrown=[], outcome=Outcome.THREW, elapsed_ms=0)

    assert result.thrown_errors == ("Script raised an error",)
    assert result.error_kind is ErrorKind.RUNTIME_THROW


def test_timed_out_always_has_timeout_kind() -> None:
    result = aggregate(
        request_id="r4",
        captured=[],
        thrown=["Execution timed out after 10 ms"],
        outcome=Outcome.TIMED_OUT,
        elapsed_ms=10,
        error_kind=ErrorKind.RUNTIME_THROW,
    )

    assert result.error_kind is ErrorKind.TIMEOUT


def test_negative_or_nan_duration_is_clamped() -> None:
    negative = aggregate(request_id="r5", captured=[], thrown=[], outcome=Outcome.COMPLETED, elapsed_ms=-3)
    nan = aggregate(request_id="r6", captured=[], thrown=[], outcome=Outcome.COMPLETED, elapsed_ms=float("nan"))

    assert negative.duration_ms == 0.0
    assert nan.duration_ms == 0.0


def test_bad_input_degrades_to_aggregation_failure() -> None:
    result = aggregate(
        request_id="r7",
        captured=[("shout", "x")],
        thrown=[],
        outcome=Outcome.COMPLETED,
        elapsed_ms=4,
    )

    assert result.outcome is Outcome.THREW
    assert result.error_kind is ErrorKind.AGGREGATION_FAILURE
    assert result.output == ()
    assert result.thrown_errors[0].startswith("Result aggregation failed:")
    assert result.duration_ms == 4.0


def test_to_dict_is_json_friendly() -> None:
    result = aggregate(
        request_id="r8",
        captured=[("info", "hello")],
        thrown=[],
        outcome=Outcome.COMPLETED,
        elapsed_ms=1,
    )

    payload = result.to_dict()
    assert payload["outcome"] == "Completed"
    assert payload["error_kind"] is None
    assert payload["output"] == [{"level": "info", "rendered": "hello", "sequence": 0}]
