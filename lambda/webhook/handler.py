"""
Lambda handler for Lemon Squeezy webhook events.

POST /api/webhook
Handles: order_created, subscription_created, subscription_updated,
subscription_cancelled, subscription_payment_success,
subscription_payment_failed

Events are only logged. The handler always answers 200, even when
processing fails, so Lemon Squeezy does not retry non-critical deliveries.
"""

import base64
import hashlib
import hmac
import json
import logging
import os
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

# Initialize AWS clients once per container (outside handler)
ssm_client = boto3.client("ssm")

# Load configuration from environment variables
ENV = os.environ.get("ENV", "dev")
APP_NAME = os.environ.get("APP_NAME", "worktab-api")

# SSM values by parameter name; only successful reads are kept
SSM_PARAMETER_CACHE: Dict[str, str] = {}


# ============================================================================
# Webhook Signature Verification
# ============================================================================


def get_webhook_secret_from_ssm() -> Optional[str]:
    """
    Fetch the Lemon Squeezy webhook secret from SSM Parameter Store.

    Only a found secret is cached, so a failed read is retried on the next
    delivery.

    Returns:
        str: Webhook secret, or None if the parameter is missing or SSM fails
    """
    param_name = f"/{ENV}/{APP_NAME}/lemon-squeezy/webhook-secret"
    if param_name in SSM_PARAMETER_CACHE:
        return SSM_PARAMETER_CACHE[param_name]

    try:
        response = ssm_client.get_parameter(Name=param_name, WithDecryption=True)
        secret = response.get("Parameter", {}).get("Value")
        if secret:
            SSM_PARAMETER_CACHE[param_name] = secret
        return secret or None
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"[webhook] Could not read {param_name} from SSM: {e}")
        return None


def get_webhook_secret() -> Optional[str]:
    """LEMON_SQUEEZY_WEBHOOK_SECRET from the environment, then SSM."""
    return os.environ.get("LEMON_SQUEEZY_WEBHOOK_SECRET") or get_webhook_secret_from_ssm()


def verify_webhook_signature(payload: str, signature: str, secret: str) -> bool:
    """
    Verify a Lemon Squeezy webhook signature.

    Lemon Squeezy sends the hex HMAC-SHA256 of the raw body in X-Signature.

    Args:
        payload: Raw request body
        signature: X-Signature header value
        secret: Webhook signing secret

    Returns:
        bool: True if signature is valid
    """
    computed_signature = hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(computed_signature, signature)

    if not is_valid:
        logger.warning("[webhook] Webhook signature validation failed")

    return is_valid


# ============================================================================
# Event Handlers
# ============================================================================


def _attributes(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    return data.get("attributes") or {}


def _resource_id(event: Dict[str, Any]) -> Optional[str]:
    return (event.get("data") or {}).get("id")


def handle_order_created(event: Dict[str, Any]) -> None:
    """New order; a license key was generated."""
    try:
        attributes = _attributes(event)
        license_key = (attributes.get("first_order_item") or {}).get("license_key")

        logger.info(
            f"[webhook] Order created: order_id={_resource_id(event)}, "
            f"customer_email={attributes.get('user_email')}, has_license_key={bool(license_key)}"
        )

        if license_key:
            logger.info(f"[webhook] License key generated: ****{license_key[-4:]}")

    except Exception as e:
        logger.error(f"[webhook] Error handling order_created: {str(e)}", exc_info=True)


def handle_subscription_created(event: Dict[str, Any]) -> None:
    try:
        attributes = _attributes(event)
        logger.info(
            f"[webhook] Subscription created: subscription_id={_resource_id(event)}, "
            f"customer_email={attributes.get('user_email')}"
        )
    except Exception as e:
        logger.error(f"[webhook] Error handling subscription_created: {str(e)}", exc_info=True)


def handle_subscription_updated(event: Dict[str, Any]) -> None:
    try:
        logger.info(f"[webhook] Subscription updated: {_resource_id(event)}")
    except Exception as e:
        logger.error(f"[webhook] Error handling subscription_updated: {str(e)}", exc_info=True)


def handle_subscription_cancelled(event: Dict[str, Any]) -> None:
    try:
        attributes = _attributes(event)
        logger.info(
            f"[webhook] Subscription cancelled: subscription_id={_resource_id(event)}, "
            f"customer_email={attributes.get('user_email')}"
        )
    except Exception as e:
        logger.error(f"[webhook] Error handling subscription_cancelled: {str(e)}", exc_info=True)


def handle_subscription_payment_success(event: Dict[str, Any]) -> None:
    try:
        logger.info(f"[webhook] Subscription payment succeeded: {_resource_id(event)}")
    except Exception as e:
        logger.error(f"[webhook] Error handling subscription_payment_success: {str(e)}", exc_info=True)


def handle_subscription_payment_failed(event: Dict[str, Any]) -> None:
    try:
        logger.info(f"[webhook] Subscription payment failed: {_resource_id(event)}")
    except Exception as e:
        logger.error(f"[webhook] Error handling subscription_payment_failed: {str(e)}", exc_info=True)


EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    "order_created": handle_order_created,
    "subscription_created": handle_subscription_created,
    "subscription_updated": handle_subscription_updated,
    "subscription_cancelled": handle_subscription_cancelled,
    "subscription_payment_success": handle_subscription_payment_success,
    "subscription_payment_failed": handle_subscription_payment_failed,
}


def dispatch_event(webhook_event: Dict[str, Any]) -> Optional[str]:
    """
    Dispatch a webhook payload by its `meta.event_name`.

    Args:
        webhook_event: Parsed webhook payload

    Returns:
        str: The event name (None if absent)
    """
    event_name = (webhook_event.get("meta") or {}).get("event_name")
    logger.info(f"[webhook] Lemon Squeezy webhook received: {event_name}")

    event_handler = EVENT_HANDLERS.get(event_name)
    if event_handler is None:
        logger.info(f"[webhook] Unhandled webhook event: {event_name}")
        return event_name

    event_handler(webhook_event)
    return event_name


# ============================================================================
# Handler
# ============================================================================


def build_response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
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


def process_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process the Lambda event and dispatch the webhook.

    Args:
        event: Lambda event object

    Returns:
        API Gateway response object
    """
    if get_http_method(event) != "POST":
        return build_response(405, {"error": "Method not allowed"})

    try:
        raw_body = event.get("body") or ""
        if event.get("isBase64Encoded"):
            raw_body = base64.b64decode(raw_body).decode("utf-8")

        signature = get_header(event, "x-signature")
        if signature:
            secret = get_webhook_secret()
            if secret and not verify_webhook_signature(raw_body, signature, secret):
                # Acknowledge anyway; the event is not dispatched
                return build_response(200, {"received": False, "error": "Invalid signature"})

        webhook_event = json.loads(raw_body) if raw_body else {}
        if not isinstance(webhook_event, dict):
            raise ValueError("Webhook payload must be a JSON object")

        dispatch_event(webhook_event)
        return build_response(200, {"received": True})

    except Exception as e:
        logger.error(f"[webhook] Webhook error: {str(e)}", exc_info=True)
        return build_response(200, {"error": "Webhook processed with errors"})


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler entry point.

    Args:
        event: Lambda event object
        context: Lambda context object

    Returns:
        API Gateway response object
    """
    return process_event(event)
