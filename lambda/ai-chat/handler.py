"""
Lambda handler for the WorkTab AI assistant chat endpoint.

POST /api/ai-chat
Body: {"message": str, "context": object, "history": array}

This handler:
1. Answers CORS preflight and rejects methods other than POST
2. Validates the request payload using Pydantic schemas
3. Resolves the caller identity from headers or body
4. Runs one chat turn through the ChatOrchestrator
5. Maps every failure to an API Gateway response
"""

import base64
import json
import logging
import os
from typing import Any, Dict, Optional

import boto3
from pydantic import ValidationError

from anthropic_client import AnthropicClient
from errors import ChatError, ConfigurationError, InputError
from models import CallerIdentity, ChatRequest
from orchestrator import ChatOrchestrator
from rate_limiter import DynamoDBUsageStore, NoOpUsageStore, RateLimiter

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

# Load configuration from environment variables
RATE_LIMITING_ENABLED = os.environ.get("RATE_LIMITING_ENABLED", "false").lower() == "true"
USAGE_TABLE_NAME = os.environ.get("USAGE_TABLE_NAME")

# Initialize AWS clients once per container (outside handler)
dynamodb_client = boto3.client("dynamodb") if USAGE_TABLE_NAME else None

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# ============================================================================
# Request / Response Helpers
# ============================================================================


def build_response(status_code: int, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build an API Gateway proxy response with CORS headers.

    Args:
        status_code: HTTP status code
        body: JSON body, or None for an empty body

    Returns:
        dict: API Gateway response object
    """
    headers = dict(CORS_HEADERS)
    if body is not None:
        headers["Content-Type"] = "application/json"
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body) if body is not None else "",
    }


def get_http_method(event: Dict[str, Any]) -> str:
    """Read the HTTP method from a REST (v1) or HTTP API (v2) event."""
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method", "")
    return (method or "").upper()


def get_header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    headers = event.get("headers") or {}
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Parse the JSON request body.

    Args:
        event: Lambda event object

    Returns:
        dict: Parsed body ({} when absent)

    Raises:
        InputError: If the body is not a JSON object
    """
    raw_body = event.get("body")
    if not raw_body:
        return {}

    if event.get("isBase64Encoded"):
        raw_body = base64.b64decode(raw_body).decode("utf-8")

    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError as e:
        raise InputError("Invalid JSON in request body", details=str(e)) from e

    if not isinstance(body, dict):
        raise InputError("Request body must be a JSON object")
    return body


def resolve_caller(event: Dict[str, Any], body: Dict[str, Any]) -> CallerIdentity:
    """
    Resolve the caller identity.

    X-User-Id header, then body userId, then "anonymous". Pro when the
    X-Is-Pro header is "true" or the body isPro is exactly true.
    """
    caller_id = get_header(event, "x-user-id") or body.get("userId") or "anonymous"
    is_pro = get_header(event, "x-is-pro") == "true" or body.get("isPro") is True
    return CallerIdentity(id=str(caller_id), is_pro=is_pro)


def build_orchestrator() -> ChatOrchestrator:
    """Wire the orchestrator from environment configuration."""
    if RATE_LIMITING_ENABLED and dynamodb_client is not None:
        store = DynamoDBUsageStore(dynamodb_client, USAGE_TABLE_NAME)
    else:
        store = NoOpUsageStore()

    return ChatOrchestrator(
        model_client=AnthropicClient(),
        rate_limiter=RateLimiter(store=store, enabled=RATE_LIMITING_ENABLED),
    )


# ============================================================================
# Handler
# ============================================================================


def process_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process the Lambda event and run one chat turn.

    Args:
        event: Lambda event object

    Returns:
        API Gateway response object
    """
    method = get_http_method(event)

    if method == "OPTIONS":
        return build_response(200)

    if method != "POST":
        return build_response(405, {"error": "Method not allowed"})

    try:
        body = parse_body(event)
        try:
            request = ChatRequest.model_validate(body)
        except ValidationError as e:
            raise InputError(
                "Validation error",
                details=e.errors(include_url=False, include_context=False, include_input=False),
            ) from e

        request = request.model_copy(update={"caller": resolve_caller(event, body)})
        logger.info(
            f"[ai-chat] Validated request: message={len(request.message)} chars, "
            f"history={len(request.history)} turns, caller={request.caller.id}"
        )

        result = build_orchestrator().run_turn(request)

        logger.info(f"[ai-chat] Returning response with {len(result.actions)} actions")
        return build_response(200, result.to_response_body())

    except ConfigurationError as e:
        logger.error(f"[ai-chat] Configuration error: {e.message}")
        return build_response(e.status_code, e.to_body())

    except InputError as e:
        logger.warning(f"[ai-chat] Invalid request: {e.message}")
        return build_response(e.status_code, e.to_body())

    except ChatError as e:
        logger.error(f"[ai-chat] Chat turn failed: {e.message}")
        return build_response(e.status_code, e.to_body())

    except Exception as e:
        logger.error(f"[ai-chat] Error in AI chat API: {str(e)}", exc_info=True)
        return build_response(500, {
            "error": "Internal server error",
            "message": str(e),
        })


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler entry point.

    Args:
        event: Lambda event object
        context: Lambda context object

    Returns:
        API Gateway response object
    """
    logger.info(f"[ai-chat] Processing request: {get_http_method(event)} {event.get('path', '')}")
    return process_event(event)
