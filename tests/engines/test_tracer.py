"""
Engine tracer tests.

Verifies:
- Input fingerprints are deterministic 16-char SHA-256 prefixes
- REIMBURSEMENT_ENGINE_TRACE records are emitted at DEBUG only
- Failing engines are traced with outcome "error" and still raise
- Positional arguments are fingerprinted like keyword arguments
"""

import logging
from datetime import datetime, timezone

import pytest

from reimbursement_engines.tracer import compute_input_fingerprint, traced_engine

TRACER_LOGGER = "reimbursement_kernel.engines.tracer"


@traced_engine("sample", "2.1", fingerprint_fields=("x", "when"))
def _sample(x=None, when=None):
    return x


@traced_engine("failing", "1.0")
def _failing(x=1):
    return 1 / x


class TestFingerprint:

    def test_deterministic(self):
        kwargs = {"x": {"b": 1, "a": [1, 2]}, "when": datetime(2024, 1, 1, tzinfo=timezone.utc)}
        first = compute_input_fingerprint(("x", "when"), kwargs)
        assert first == compute_input_fingerprint(("x", "when"), dict(reversed(kwargs.items())))
        assert len(first) == 16

    def test_dict_key_order_irrelevant(self):
        a = compute_input_fingerprint(("x",), {"x": {"a": 1, "b": 2}})
        b = compute_input_fingerprint(("x",), {"x": {"b": 2, "a": 1}})
        assert a == b

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("x",), {}) == compute_input_fingerprint(
            ("x",), {"x": None},
        )

    def test_different_inputs_differ(self):
        assert compute_input_fingerprint(("x",), {"x": 1}) != compute_input_fingerprint(
            ("x",), {"x": 2},
        )


class TestTracedEngine:

    def test_trace_record_emitted(self, captured_logs):
        assert _sample(x=5) == 5
        traces = [r for r in captured_logs() if r["message"] == "REIMBURSEMENT_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["logger"] == TRACER_LOGGER
        assert trace["engine_name"] == "sample"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(
            ("x", "when"), {"x": 5},
        )
        assert trace["function"] == "_sample"
        assert trace["outcome"] == "ok"
        assert trace["duration_ms"] >= 0

    def test_no_trace_above_debug(self, captured_logs):
        tracer = logging.getLogger(TRACER_LOGGER)
        tracer.setLevel(logging.INFO)
        try:
            assert _sample(x=1) == 1
        finally:
            tracer.setLevel(logging.NOTSET)
        assert not [r for r in captured_logs() if r["message"] == "REIMBURSEMENT_ENGINE_TRACE"]

    def test_wraps_preserves_name(self):
        assert _sample.__name__ == "_sample"

    def test_failure_traced_and_reraised(self, captured_logs):
        with pytest.raises(ZeroDivisionError):
            _failing(x=0)
        trace = next(r for r in captured_logs() if r["message"] == "REIMBURSEMENT_ENGINE_TRACE")
        assert trace["outcome"] == "error"
        assert trace["engine_name"] == "failing"

    def test_positional_and_keyword_calls_fingerprint_alike(self, captured_logs):
        when = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
        _sample(5, when)
        _sample(x=5, when=when)
        traces = [r for r in captured_logs() if r["message"] == "REIMBURSEMENT_ENGINE_TRACE"]
        positional, keyword = (t["input_fingerprint"] for t in traces)
        assert positional == keyword
        assert positional == compute_input_fingerprint(("x", "when"), {"x": 5, "when": when})
        assert positional != compute_input_fingerprint(("x", "when"), {})

    def test_unknown_fingerprint_field_refused(self):
        with pytest.raises(ValueError, match="missing"):
            @traced_engine("broken", "1.0", fingerprint_fields=("missing",))
            def _broken(x):
                return x
