"""Tests for core engine components: tools, templates, errors, retries, config and logging."""

import json
import logging

import pytest

from mediaflow.config import AppConfig, LogLevel, get_config, get_testing_config, reset_config
from mediaflow.core.error_recovery import RetryConfig, execute_with_retry
from mediaflow.core.exceptions import (
    ConfigurationError,
    NodeExecutionError,
    ProviderError,
    RateLimitError,
    ToolRegistryError,
    TransientError,
    create_error_response,
)
from mediaflow.core.logging import (
    StructuredFormatter,
    _context_filter,
    clear_logging_context,
    set_logging_context,
)
from mediaflow.core.templates import render_template, render_value
from mediaflow.core.tool_registry import ToolRegistry


def shout(context, text=""):
    return text.upper()


class TestToolRegistry:
    """Tool registration and lookup."""

    def test_register_and_get(self):
        registry = ToolRegistry()
        registry.register_tool("shout", shout, description="  Upper-cases text ")

        assert registry.get_tool("shout")(None, text="hi") == "HI"
        assert registry.tool_exists("shout")
        assert registry.list_tools() == [{"name": "shout", "description": "Upper-cases text"}]

    def test_duplicate_registration_requires_replace(self):
        registry = ToolRegistry()
        registry.register_tool("shout", shout)

        with pytest.raises(ToolRegistryError):
            registry.register_tool("shout", shout)
        registry.register_tool("shout", lambda context: "replaced", replace=True)

        assert registry.get_tool("shout")(None) == "replaced"

    def test_unknown_tool_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ToolRegistry().get_tool("missing")

        assert exc_info.value.context["tool_name"] == "missing"

    @pytest.mark.parametrize("function", ["not callable", lambda: None])
    def test_invalid_functions_are_rejected(self, function):
        with pytest.raises(ToolRegistryError):
            ToolRegistry().register_tool("bad", function)

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register_tool("shout", shout)

        assert registry.unregister_tool("shout") is True
        assert registry.unregister_tool("shout") is False


class TestTemplates:
    """Placeholder rendering."""

    def test_render_template_with_nested_values(self):
        context = {"topic": "tides", "plan": {"shots": ["wide", "close"]}, "count": 2}

        rendered = render_template("{{topic}} in {{ count }} shots: {{plan.shots.1}}", context)

        assert rendered == "tides in 2 shots: close"

    def test_unknown_placeholder_left_as_written(self):
        assert render_template("Hello {{name}}", {}) == "Hello {{name}}"

    def test_structured_values_render_as_json(self):
        assert render_template("Plan: {{plan}}", {"plan": {"a": 1}}) == 'Plan: {"a": 1}'

    def test_render_value_keeps_raw_types_for_whole_placeholders(self):
        context = {"prompts": ["a", "b"], "model": "gen4_turbo"}
        params = {"prompts": "{{prompts}}", "model": "{{model}}", "label": "x-{{model}}", "missing": "{{nope}}"}

        rendered = render_value(params, context)

        assert rendered == {"prompts": ["a", "b"], "model": "gen4_turbo", "label": "x-gen4_turbo", "missing": None}


class TestExceptions:
    """Error payloads and class defaults."""

    def test_to_dict_carries_code_and_context(self):
        error = ConfigurationError("Missing key", config_key="REPLICATE_API_KEY")

        data = error.to_dict()

        assert data["error_code"] == "ConfigurationError"
        assert data["severity"] == "high"
        assert data["category"] == "configuration"
        assert data["context"] == {"config_key": "REPLICATE_API_KEY"}
        assert data["recoverable"] is False

    def test_rate_limit_error_defaults(self):
        error = RateLimitError("throttled", provider="replicate")

        assert isinstance(error, ProviderError)
        assert error.status_code == 429
        assert error.details["status_code"] == 429
        assert error.context["provider"] == "replicate"

    def test_transient_errors_are_recoverable(self):
        assert TransientError("timeout").recoverable is True

    def test_error_response_shape(self):
        response = create_error_response(NodeExecutionError("boom", node_id="n1"))

        assert response["error"] == "NodeExecutionError"
        assert response["context"] == {"node_id": "n1"}
        assert response["details"]["severity"] == "high"


class TestRetry:
    """Backoff for transient failures only."""

    def test_transient_failures_are_retried(self):
        delays = []
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientError("connection reset")
            return "ok"

        config = RetryConfig(max_attempts=3, jitter=False, sleep=delays.append)

        assert execute_with_retry(flaky, config) == "ok"
        assert delays == [1.0, 2.0]

    def test_provider_errors_are_not_retried(self):
        calls = []

        def rejected():
            calls.append(1)
            raise ProviderError("content policy")

        with pytest.raises(ProviderError):
            execute_with_retry(rejected, RetryConfig(sleep=lambda s: None))
        assert len(calls) == 1

    def test_gives_up_after_max_attempts(self):
        calls = []

        def down():
            calls.append(1)
            raise TransientError("503")

        with pytest.raises(TransientError):
            execute_with_retry(down, RetryConfig(max_attempts=2, sleep=lambda s: None))
        assert len(calls) == 2

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=10.0, max_delay=15.0, jitter=False)

        assert config.get_delay(3) == 15.0


class TestConfig:
    """Environment-driven configuration."""

    def test_from_env_reads_prefixed_and_vendor_variables(self, monkeypatch):
        monkeypatch.setenv("MEDIAFLOW_PORT", "9000")
        monkeypatch.setenv("MEDIAFLOW_DEBUG", "yes")
        monkeypatch.setenv("MEDIAFLOW_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("MEDIAFLOW_CORS_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("MEDIAFLOW_AUTOSAVE_DELAY", "2.5")
        monkeypatch.setenv("REPLICATE_API_KEY", "r8_token")

        config = AppConfig.from_env()

        assert config.port == 9000
        assert config.debug is True
        assert config.log_level == LogLevel.DEBUG
        assert config.cors_origins == ["http://a.test", "http://b.test"]
        assert config.autosave_delay == 2.5
        assert config.replicate_api_key == "r8_token"

    @pytest.mark.parametrize("overrides", [
        {"port": 0},
        {"database_url": "oracle://db"},
        {"max_run_steps": 0},
        {"provider_timeout": -1},
    ])
    def test_invalid_settings_are_rejected(self, overrides):
        with pytest.raises(ValueError):
            get_testing_config(**overrides)

    def test_get_config_is_cached_until_reset(self, monkeypatch):
        reset_config()
        monkeypatch.setenv("MEDIAFLOW_APP_NAME", "First")
        first = get_config()
        monkeypatch.setenv("MEDIAFLOW_APP_NAME", "Second")

        assert get_config() is first
        reset_config()
        assert get_config().app_name == "Second"
        reset_config()

    def test_sqlite_connect_args(self):
        assert get_testing_config().get_database_connect_args() == {"check_same_thread": False}


class TestLogging:
    """Run context is attached to structured log lines."""

    def make_record(self, message="hello", **extra_fields):
        record = logging.LogRecord("mediaflow.test", logging.INFO, __file__, 1, message, None, None)
        if extra_fields:
            record.extra_fields = extra_fields
        return record

    def test_context_fields_appear_in_json(self):
        set_logging_context(run_id="run-1", workflow_id="wf-1")
        try:
            record = self.make_record(shot=3)
            _context_filter.filter(record)
            entry = json.loads(StructuredFormatter().format(record))
        finally:
            clear_logging_context()

        assert entry["message"] == "hello"
        assert entry["run_id"] == "run-1"
        assert entry["workflow_id"] == "wf-1"
        assert entry["shot"] == 3

    def test_cleared_context_is_absent(self):
        record = self.make_record()
        _context_filter.filter(record)

        assert record.run_id == "-"
        assert "run_id" not in json.loads(StructuredFormatter().format(record))
