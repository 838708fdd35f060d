#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the ai-chat Lambda handler.

Tests cover:
- CORS preflight and method handling
- Request validation
- Caller identity resolution
- Success response shape
- Error mapping for configuration, upstream and unexpected failures
"""

import base64
import importlib.util
import json
import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import requests

import anthropic_client

# Load the ai-chat handler module under a unique name
handler_path = os.path.join(os.path.dirname(__file__), '../../ai-chat/handler.py')
spec = importlib.util.spec_from_file_location("ai_chat_handler", handler_path)
ai_chat_handler = importlib.util.module_from_spec(spec)
sys.modules['ai_chat_handler'] = ai_chat_handler
spec.loader.exec_module(ai_chat_handler)

handler = ai_chat_handler.handler


def _claude_response(status_code=200, json_data=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    response.json.return_value = json_data
    return response


@pytest.fixture(autouse=True)
def setup_environment(monkeypatch):
    """Setup environment variables for tests."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    anthropic_client.SSM_PARAMETER_CACHE.clear()
    yield
    anthropic_client.SSM_PARAMETER_CACHE.clear()


class TestMethodHandling:
    """Test preflight and method checks."""

    def test_options_preflight(self, api_gateway_event):
        response = handler(api_gateway_event(method="OPTIONS"), {})

        assert response["statusCode"] == 200
        assert response["body"] == ""
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"
        assert response["headers"]["Access-Control-Allow-Methods"] == "POST, OPTIONS"
        assert response["headers"]["Access-Control-Allow-Headers"] == "Content-Type"

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_other_methods_rejected(self, api_gateway_event, method):
        response = handler(api_gateway_event(method=method), {})

        assert response["statusCode"] == 405
        assert json.loads(response["body"]) == {"error": "Method not allowed"}
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"

    @patch("anthropic_client.requests.post")
    def test_http_api_v2_event(self, mock_post, sample_claude_reply):
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        event = {
            "requestContext": {"http": {"method": "POST"}},
            "headers": {},
            "body": json.dumps({"message": "hi"}),
        }

        response = handler(event, {})

        assert response["statusCode"] == 200


class TestValidation:
    """Test request validation."""

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}, {"message": None}])
    @patch("anthropic_client.requests.post")
    def test_blank_message_rejected_without_external_call(self, mock_post, api_gateway_event, body):
        # Act
        response = handler(api_gateway_event(body), {})

        # Assert
        assert response["statusCode"] == 400
        assert json.loads(response["body"]) == {"error": "Message is required"}
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"
        mock_post.assert_not_called()

    def test_invalid_json(self, api_gateway_event):
        response = handler(api_gateway_event("{not json"), {})

        assert response["statusCode"] == 400
        body = json.loads(response["body"])
        assert body["error"] == "Invalid JSON in request body"
        assert "details" in body

    def test_body_must_be_object(self, api_gateway_event):
        response = handler(api_gateway_event(["hi"]), {})

        assert response["statusCode"] == 400

    def test_schema_error(self, api_gateway_event):
        response = handler(api_gateway_event({"message": "hi", "history": "not a list"}), {})

        assert response["statusCode"] == 400
        body = json.loads(response["body"])
        assert body["error"] == "Validation error"
        assert body["details"][0]["loc"] == ["history"]

    def test_missing_body(self, api_gateway_event):
        response = handler(api_gateway_event(None), {})

        assert response["statusCode"] == 400


class TestSuccess:
    """Test successful chat turns."""

    @patch("anthropic_client.requests.post")
    def test_success_with_actions(self, mock_post, api_gateway_event, sample_context, sample_claude_reply):
        # Arrange
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        event = api_gateway_event({
            "message": "Close my research tabs",
            "context": sample_context,
            "history": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        })

        # Act
        response = handler(event, {})

        # Assert
        assert response["statusCode"] == 200
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"
        body = json.loads(response["body"])
        assert body == {
            "response": "I'll close all tabs in the 'Research' workspace for you.",
            "actions": [{"type": "close_workspace_tabs", "params": {"workspaceId": "ws_123"}}],
            "usage": {"input_tokens": 1200, "output_tokens": 40},
        }

        payload = mock_post.call_args.kwargs["json"]
        assert payload["messages"][-1] == {"role": "user", "content": "Close my research tabs"}
        assert len(payload["messages"]) == 3
        assert "ws_123" in payload["system"]

    @patch("anthropic_client.requests.post")
    def test_actions_omitted_when_empty(self, mock_post, api_gateway_event):
        mock_post.return_value = _claude_response(200, {"content": [{"text": "Sure."}], "usage": {}})

        response = handler(api_gateway_event({"message": "hello"}), {})

        body = json.loads(response["body"])
        assert body == {"response": "Sure.", "usage": {}}

    @patch("anthropic_client.requests.post")
    def test_base64_body(self, mock_post, sample_claude_reply):
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        event = {
            "httpMethod": "POST",
            "headers": {},
            "body": base64.b64encode(json.dumps({"message": "hi"}).encode()).decode(),
            "isBase64Encoded": True,
        }

        response = handler(event, {})

        assert response["statusCode"] == 200

    @patch("anthropic_client.requests.post")
    def test_null_context_and_history(self, mock_post, api_gateway_event, sample_claude_reply):
        mock_post.return_value = _claude_response(200, sample_claude_reply)

        response = handler(api_gateway_event({"message": "hi", "context": None, "history": None}), {})

        assert response["statusCode"] == 200

    @patch("anthropic_client.requests.post")
    def test_null_health_warning_message(self, mock_post, api_gateway_event, sample_claude_reply):
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        context = {"healthData": {"warnings": [{"message": None}]}}

        response = handler(api_gateway_event({"message": "hi", "context": context}), {})

        assert response["statusCode"] == 200

    @patch("anthropic_client.requests.post")
    def test_fractional_workspace_tab_count(self, mock_post, api_gateway_event, sample_claude_reply):
        # Arrange
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        context = {
            "workspaces": [{"id": "ws_1", "name": "Docs", "color": "red-500", "tabCount": 2.5}],
            "workspaceCount": 1.0,
        }

        # Act
        response = handler(api_gateway_event({"message": "hi", "context": context}), {})

        # Assert
        assert response["statusCode"] == 200
        system_prompt = mock_post.call_args.kwargs["json"]["system"]
        assert "2.5 tabs" in system_prompt
        assert "User has 1 workspace\n" in system_prompt

    @patch("anthropic_client.requests.post")
    def test_numeric_health_tab_title(self, mock_post, api_gateway_event, sample_claude_reply):
        mock_post.return_value = _claude_response(200, sample_claude_reply)
        context = {"healthData": {"tabs": [{"title": 123, "url": 456, "memory": 80}]}}

        response = handler(api_gateway_event({"message": "hi", "context": context}), {})

        assert response["statusCode"] == 200


class TestErrorMapping:
    """Test failure responses."""

    @patch("anthropic_client.requests.post")
    def test_missing_api_key(self, mock_post, api_gateway_event, monkeypatch):
        # Arrange
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        # Act
        with patch("anthropic_client.ssm_client") as mock_ssm:
            mock_ssm.get_parameter.return_value = {"Parameter": {}}
            response = handler(api_gateway_event({"message": "hi"}), {})

        # Assert
        assert response["statusCode"] == 500
        assert json.loads(response["body"]) == {"error": "AI service not configured"}
        mock_post.assert_not_called()

    @patch("anthropic_client.requests.post")
    def test_upstream_401(self, mock_post, api_gateway_event):
        mock_post.return_value = _claude_response(401, text="invalid x-api-key")

        response = handler(api_gateway_event({"message": "hi"}), {})

        assert response["statusCode"] == 401
        assert json.loads(response["body"]) == {"error": "AI service error", "details": "Invalid API key"}

    @patch("anthropic_client.requests.post")
    def test_upstream_500(self, mock_post, api_gateway_event):
        mock_post.return_value = _claude_response(500, text="overloaded")

        response = handler(api_gateway_event({"message": "hi"}), {})

        assert response["statusCode"] == 500
        assert json.loads(response["body"])["details"] == "Failed to get AI response"

    @patch("anthropic_client.requests.post")
    def test_malformed_upstream_reply(self, mock_post, api_gateway_event):
        mock_post.return_value = _claude_response(200, {"content": []})

        response = handler(api_gateway_event({"message": "hi"}), {})

        assert response["statusCode"] == 500
        assert json.loads(response["body"]) == {"error": "Invalid response from AI service"}

    @patch("anthropic_client.requests.post")
    def test_transport_failure(self, mock_post, api_gateway_event):
        mock_post.side_effect = requests.exceptions.Timeout("read timed out")

        response = handler(api_gateway_event({"message": "hi"}), {})

        assert response["statusCode"] == 500
        body = json.loads(response["body"])
        assert body["error"] == "Internal server error"
        assert "read timed out" in body["message"]

    @patch("ai_chat_handler.build_orchestrator")
    def test_unexpected_error(self, mock_build, api_gateway_event):
        mock_build.return_value.run_turn.side_effect = RuntimeError("boom")

        response = handler(api_gateway_event({"message": "hi"}), {})

        assert response["statusCode"] == 500
        assert json.loads(response["body"]) == {"error": "Internal server error", "message": "boom"}
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"


class TestResolveCaller:
    """Test caller identity resolution."""

    def test_defaults_to_anonymous_free(self):
        caller = ai_chat_handler.resolve_caller({"headers": {}}, {})

        assert caller.id == "anonymous"
        assert caller.is_pro is False

    def test_headers_case_insensitive(self):
        event = {"headers": {"X-User-Id": "ext-1", "X-Is-Pro": "true"}}

        caller = ai_chat_handler.resolve_caller(event, {"userId": "body-id"})

        assert caller.id == "ext-1"
        assert caller.is_pro is True

    def test_body_fallback(self):
        caller = ai_chat_handler.resolve_caller({"headers": None}, {"userId": "body-id", "isPro": True})

        assert caller.id == "body-id"
        assert caller.is_pro is True

    def test_is_pro_must_be_exactly_true(self):
        caller = ai_chat_handler.resolve_caller({"headers": {"x-is-pro": "yes"}}, {"isPro": "true"})

        assert caller.is_pro is False

    @patch("ai_chat_handler.build_orchestrator")
    def test_caller_passed_to_orchestrator(self, mock_build, api_gateway_event):
        mock_build.return_value.run_turn.return_value = MagicMock(
            actions=[], to_response_body=lambda: {"response": "ok", "usage": {}}
        )
        event = api_gateway_event({"message": "hi"}, headers={"x-user-id": "ext-9"})

        handler(event, {})

        request = mock_build.return_value.run_turn.call_args.args[0]
        assert request.caller.id == "ext-9"


class TestBuildOrchestrator:
    """Test wiring from configuration."""

    def test_disabled_by_default(self):
        orchestrator = ai_chat_handler.build_orchestrator()

        assert orchestrator.rate_limiter.enabled is False
        assert orchestrator.history_window == 10

    def test_enabled_with_table(self, monkeypatch):
        monkeypatch.setattr(ai_chat_handler, "RATE_LIMITING_ENABLED", True)
        monkeypatch.setattr(ai_chat_handler, "USAGE_TABLE_NAME", "usage")
        monkeypatch.setattr(ai_chat_handler, "dynamodb_client", MagicMock())

        orchestrator = ai_chat_handler.build_orchestrator()

        assert orchestrator.rate_limiter.enabled is True
        assert orchestrator.rate_limiter.store.table_name == "usage"
