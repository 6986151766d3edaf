"""Unit tests for Scope-Kit logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import logging
import sys
import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch, MagicMock

from scopekit.scope_logging import (
    setup_logging,
    JsonFormatter,
    PerformanceMonitor,
    log_performance,
    log_operation,
    ObservabilityHooks,
    log_cascade_delete,
    log_entity_event,
    log_error_with_context,
    log_recommendation_event,
    observability_hooks,
    performance_monitor,
)


@pytest.fixture(autouse=True)
def clean_monitor():
    performance_monitor.clear()
    yield
    performance_monitor.clear()


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 1, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "function" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logger.makeRecord("test", logging.ERROR, __file__, 1, "Failed", (), sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 1, "Test message", (), None)
        record.extra_fields = {"module_id": "m1"}

        data = json.loads(formatter.format(record))

        assert data["module_id"] == "m1"


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        """Test recording a performance metric."""
        monitor = PerformanceMonitor()
        monitor.record_metric("query_duration", 42, {"tag": "test"})

        metrics = monitor.get_metrics("query_duration")

        assert metrics["query_duration"][0]["value"] == 42
        assert metrics["query_duration"][0]["tags"]["tag"] == "test"

    def test_get_all_metrics_and_clear(self):
        """Test getting all metrics and clearing them."""
        monitor = PerformanceMonitor()
        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)

        all_metrics = monitor.get_metrics()
        assert [m["value"] for m in all_metrics["metric1"]] == [1, 3]
        assert len(all_metrics["metric2"]) == 1

        monitor.clear()
        assert monitor.get_metrics() == {}

    def test_samples_are_capped(self):
        """Test that only the most recent samples are kept per metric."""
        monitor = PerformanceMonitor(max_samples=3)
        for value in range(10):
            monitor.record_metric("add_module_duration", value)

        samples = monitor.get_metrics("add_module_duration")["add_module_duration"]
        assert [m["value"] for m in samples] == [7, 8, 9]


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def test_log_performance_decorator(self):
        """Test the log_performance decorator."""
        @log_performance("sample_operation")
        def sample():
            return "result"

        assert sample() == "result"

        metrics = performance_monitor.get_metrics("sample_operation_duration")["sample_operation_duration"]
        assert len(metrics) == 1
        assert metrics[0]["value"] >= 0
        assert metrics[0]["tags"]["status"] == "success"

    def test_log_performance_decorator_with_exception(self):
        """Test the log_performance decorator with exception."""
        @log_performance("sample_operation")
        def sample():
            raise ValueError("Test error")

        with pytest.raises(ValueError):
            sample()

        metrics = performance_monitor.get_metrics("sample_operation_duration")["sample_operation_duration"]
        assert metrics[0]["tags"]["status"] == "error"
        assert metrics[0]["tags"]["error_type"] == "ValueError"

    def test_engine_operations_are_timed(self):
        """Test that integrity operations record metrics."""
        from scopekit import integrity
        from scopekit.models import Module, ProjectSnapshot

        integrity.add_module(ProjectSnapshot(), Module(id="", name="Cart"))

        assert performance_monitor.get_metrics("add_module_duration")["add_module_duration"]


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self):
        """Test successful operation logging."""
        with patch("scopekit.scope_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with log_operation("save_project", project_id="001-shop"):
                pass

            assert mock_logger_instance.info.called
            assert mock_logger_instance.error.called is False

    def test_log_operation_with_exception(self):
        """Test operation logging with exception."""
        with patch("scopekit.scope_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with pytest.raises(ValueError):
                with log_operation("save_project"):
                    raise ValueError("Test error")

            assert mock_logger_instance.error.called
            assert "Test error" in str(mock_logger_instance.error.call_args)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        """Test registering and triggering hooks."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("module_added", lambda **data: received.append(data))

        hooks.trigger_hooks("module_added", entity_id="m1")

        assert received == [{"entity_id": "m1"}]

    def test_unregister_hook(self):
        """Test that an unregistered hook is no longer called."""
        hooks = ObservabilityHooks()
        received = []

        def callback(**data):
            received.append(data)

        hooks.register_hook("module_added", callback)
        hooks.unregister_hook("module_added", callback)
        hooks.trigger_hooks("module_added", entity_id="m1")

        assert received == []

    def test_log_workflow_event_passes_project(self):
        """Test that workflow events carry the project id to hooks."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("project_created", lambda **data: received.append(data))

        hooks.log_workflow_event("project_created", project_id="001-shop", name="Shop")

        assert received[0]["project_id"] == "001-shop"
        assert received[0]["name"] == "Shop"
        assert "timestamp" in received[0]

    def test_hook_failure_handling(self):
        """Test that hook failures don't crash the system."""
        hooks = ObservabilityHooks()

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("module_added", failing_callback)
        hooks.trigger_hooks("module_added", entity_id="m1")


class TestLoggingFunctions:
    """Test cases for logging convenience functions."""

    def test_log_entity_event(self):
        """Test entity events are named '<entity>_<event>'."""
        with patch("scopekit.scope_logging.observability_hooks") as mock_hooks:
            log_entity_event("Added", "Module", "m1", name="Cart")

            args, kwargs = mock_hooks.log_workflow_event.call_args
            assert args[0] == "module_added"
            assert kwargs["entity_id"] == "m1"
            assert kwargs["name"] == "Cart"

    def test_log_cascade_delete(self):
        """Test cascade events report what was removed."""
        with patch("scopekit.scope_logging.observability_hooks") as mock_hooks:
            log_cascade_delete("m1", 2, 5)

            args, kwargs = mock_hooks.log_workflow_event.call_args
            assert args[0] == "cascade_delete"
            assert kwargs["removed_stories"] == 2
            assert kwargs["removed_features"] == 5

    def test_log_recommendation_event(self):
        """Test recommendation events are prefixed."""
        with patch("scopekit.scope_logging.observability_hooks") as mock_hooks:
            log_recommendation_event("select_all", "m1", "features", added=3)

            args, kwargs = mock_hooks.log_workflow_event.call_args
            assert args[0] == "recommendation_select_all"
            assert kwargs["kind"] == "features"

    def test_log_error_with_context(self):
        """Test log_error_with_context function."""
        with patch("scopekit.scope_logging.std_logging.getLogger") as mock_logger:
            error = ValueError("Test error")
            context = {"operation": "load_project", "project_id": "001-shop"}

            log_error_with_context(error, context, extra_param="extra_value")

            call_args = mock_logger.return_value.error.call_args
            extra_fields = call_args[1]["extra"]["extra_fields"]
            assert "Test error" in call_args[0][0]
            assert extra_fields["context"]["operation"] == "load_project"
            assert extra_fields["extra_param"] == "extra_value"
            assert extra_fields["error_type"] == "ValueError"


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_setup_logging(self):
        """Test setting up logging configuration."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test.log"
            setup_logging(log_level=logging.DEBUG, log_file=log_file)

            logging.getLogger("scopekit.test").info("Test message")

            content = log_file.read_text()
            assert "Test message" in content
            for line in content.strip().split("\n"):
                json.loads(line)

            logging.getLogger("scopekit").handlers.clear()

    def test_log_level_from_environment(self, monkeypatch):
        """Test that SCOPEKIT_LOG_LEVEL sets the default level."""
        monkeypatch.setenv("SCOPEKIT_LOG_LEVEL", "warning")
        setup_logging()

        assert logging.getLogger("scopekit").level == logging.WARNING
        logging.getLogger("scopekit").handlers.clear()

    def test_end_to_end_logging_flow(self):
        """Test end-to-end logging flow."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test.log"
            setup_logging(log_level=logging.DEBUG, log_file=log_file)

            received = []

            def hook(**data):
                received.append(data)

            observability_hooks.register_hook("cascade_delete", hook)
            try:
                log_cascade_delete("m1", 1, 2)
                performance_monitor.record_metric("test_metric", 42)
            finally:
                observability_hooks.unregister_hook("cascade_delete", hook)

            content = log_file.read_text()
            assert "cascade_delete" in content
            assert "Metric recorded: test_metric=42" in content
            assert received[0]["module_id"] == "m1"

            logging.getLogger("scopekit").handlers.clear()
