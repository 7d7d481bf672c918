"""Tests for taskcore.core.errors."""

import socket

import pytest

from taskcore.core.errors import (
    Cancelled,
    ErrorCategory,
    ErrorContext,
    NetworkError,
    OperationFailed,
    QueueClosed,
    QueueFull,
    RetriesExhausted,
    TaskCoreError,
    TransientError,
    ValidationError,
    categorize_error,
    is_retryable,
)


class TestTaskCoreError:
    """Tests for the base error."""

    def test_defaults(self):
        error = TaskCoreError("boom")
        assert error.message == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False
        assert error.cause is None

    def test_cause_is_chained(self):
        root = ConnectionError("reset")
        error = TaskCoreError("wrapped", cause=root)
        assert error.cause is root
        assert error.__cause__ is root

    def test_with_context_sets_known_fields_and_metadata(self):
        error = TaskCoreError("x").with_context(key="user:1", attempt=2, region="eu")
        assert error.context.key == "user:1"
        assert error.context.attempt == 2
        assert error.context.metadata == {"region": "eu"}

    def test_to_dict(self):
        error = TransientError("flaky", cause=OSError("io")).with_context(key="k")
        d = error.to_dict()
        assert d["error_type"] == "TransientError"
        assert d["category"] == "NETWORK"
        assert d["retryable"] is True
        assert d["context"] == {"key": "k"}
        assert "OSError" in d["cause"]

    def test_error_context_to_dict_skips_none(self):
        assert ErrorContext().to_dict() == {}
        assert ErrorContext(task_id="t1").to_dict() == {"task_id": "t1"}


class TestTaxonomy:
    """Tests for the caller-visible error kinds."""

    def test_retries_exhausted_carries_cause_and_count(self):
        root = TimeoutError("slow")
        error = RetriesExhausted(root, attempts_made=4)
        assert error.last_cause is root
        assert error.attempts_made == 4
        assert error.__cause__ is root
        assert error.retryable is False
        assert error.category == ErrorCategory.EXECUTION

    def test_operation_failed_mirrors_cause_retryability(self):
        assert OperationFailed(ConnectionError(), attempt=1).retryable is True
        assert OperationFailed(ValueError(), attempt=1).retryable is False
        assert OperationFailed(ValueError(), retryable=True).retryable is True

    def test_operation_failed_records_attempt(self):
        error = OperationFailed(KeyError("x"), attempt=3)
        assert error.attempt == 3
        assert error.context.attempt == 3
        assert "attempt 3" in str(error)

    def test_cancelled_reason(self):
        assert Cancelled().reason is None
        assert str(Cancelled("deadline")) == "cancelled: deadline"
        assert Cancelled().category == ErrorCategory.CANCELLATION

    def test_queue_errors(self):
        full = QueueFull(8, queue="fetch")
        assert full.max_queue_length == 8
        assert "fetch" in str(full)
        closed = QueueClosed("fetch", "draining")
        assert closed.state == "draining"
        assert full.category == closed.category == ErrorCategory.CAPACITY


class TestIsRetryable:
    """Tests for retry classification."""

    @pytest.mark.parametrize(
        "error",
        [
            TransientError("503"),
            NetworkError("dns"),
            ConnectionResetError(),
            TimeoutError(),
            BrokenPipeError(),
            socket.gaierror("name resolution"),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable(error) is True

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("bad input"),
            ValueError("nope"),
            KeyError("k"),
            FileNotFoundError("config.yaml"),
            PermissionError("denied"),
            IsADirectoryError("/tmp"),
            OSError("disk"),
            Cancelled(),
            RetriesExhausted(ConnectionError(), 3),
            QueueFull(1),
        ],
    )
    def test_not_retryable(self, error):
        assert is_retryable(error) is False

    def test_explicit_flag_overrides_default(self):
        assert is_retryable(ValidationError("x", retryable=True)) is True
        assert is_retryable(TransientError("x", retryable=False)) is False


class TestCategorizeError:
    def test_categories(self):
        assert categorize_error(QueueFull(1)) == ErrorCategory.CAPACITY
        assert categorize_error(ConnectionError()) == ErrorCategory.NETWORK
        assert categorize_error(ValueError()) == ErrorCategory.VALIDATION
        assert categorize_error(RuntimeError()) == ErrorCategory.UNKNOWN
        assert categorize_error(FileNotFoundError()) == ErrorCategory.UNKNOWN
