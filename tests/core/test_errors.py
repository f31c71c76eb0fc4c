"""Tests for the error hierarchy."""

import pytest

from cronspine.core.errors import (
    ConfigurationError,
    CronSpineError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    PersistenceError,
    SchedulingError,
)


class TestErrorCategories:
    """Each family carries its category and retry default."""

    @pytest.mark.parametrize(
        ("error_cls", "category", "retryable"),
        [
            (CronSpineError, ErrorCategory.INTERNAL, False),
            (SchedulingError, ErrorCategory.SCHEDULING, False),
            (ExecutionError, ErrorCategory.EXECUTION, True),
            (ConfigurationError, ErrorCategory.CONFIG, False),
            (PersistenceError, ErrorCategory.DATABASE, False),
        ],
    )
    def test_defaults(self, error_cls, category, retryable):
        error = error_cls("boom")
        assert error.category is category
        assert error.retryable is retryable
        assert isinstance(error, CronSpineError)

    def test_overrides(self):
        error = ExecutionError("boom", retryable=False, category=ErrorCategory.INTERNAL)
        assert error.retryable is False
        assert error.category is ErrorCategory.INTERNAL


class TestErrorContext:
    def test_with_context_sets_typed_and_metadata_fields(self):
        error = SchedulingError("bad cron").with_context(
            job_group="grp1", job_name="ping", expression="* *"
        )
        assert error.context.job_group == "grp1"
        assert error.context.metadata == {"expression": "* *"}

    def test_context_to_dict_skips_unset(self):
        assert ErrorContext(job_group="grp1").to_dict() == {"job_group": "grp1"}


class TestSerialization:
    def test_to_dict_includes_cause_and_context(self):
        cause = ValueError("underlying")
        error = PersistenceError("write failed", cause=cause).with_context(job_name="ping")
        data = error.to_dict()
        assert data["error_type"] == "PersistenceError"
        assert data["message"] == "write failed"
        assert data["category"] == "DATABASE"
        assert data["cause"] == "underlying"
        assert data["context"] == {"job_name": "ping"}

    def test_cause_is_chained(self):
        cause = ValueError("underlying")
        error = ExecutionError("wrapped", cause=cause)
        assert error.__cause__ is cause

    def test_str_is_message(self):
        assert str(SchedulingError("Invalid cron")) == "Invalid cron"
