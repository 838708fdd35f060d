"""
Lambda handler for validating Lemon Squeezy license keys.

POST /api/validate-license
Body: {"licenseKey": "abc123..."}

This handler:
1. Answers CORS preflight and rejects methods other than POST
2. Validates the request payload using Pydantic schemas
3. Calls the Lemon Squeezy license validation endpoint
4. Normalizes the vendor response to {valid, message, status?, expiresAt?}
"""

import base64
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field, ValidationError

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO"))

# Initialize AWS clients once per container (outside handler)
ssm_client = boto3.client("ssm")

# Load configuration from environment variables
ENV = os.environ.get("ENV", "dev")
APP_NAME = os.environ.get("APP_NAME", "worktab-api")
LEMON_SQUEEZY_TIMEOUT_SECONDS = float(os.environ.get("LEMON_SQUEEZY_TIMEOUT_SECONDS", "10"))

LEMON_SQUEEZY_VALIDATE_URL = "https://api.lemonsqueezy.com/v1/licenses/validate"

# SSM values by parameter name; only successful reads are kept
SSM_PARAMETER_CACHE: Dict[str, str] = {}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# Pydantic schemas for request validation
class ValidateLicenseRequest(BaseModel):
    """Request schema for license validation."""

    license_key: Optional[str] = Field(default=None, alias="licenseKey")


class LicenseValidationResult(BaseModel):
    """Normalized license validation result returned to the extension."""

    valid: bool
    message: str
    status: Optional[str] = None
    expires_at: Optional[str] = Field(default=None, alias="expiresAt")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True


# ============================================================================
# Configuration
# ============================================================================


def get_api_key_from_ssm() -> Optional[str]:
    """
    Fetch the Lemon Squeezy API key from SSM Parameter Store.

    Only a found key is cached, so a failed read is retried on the next call.

    Returns:
        str: API key, or None if the parameter is missing or SSM fails
    """
    param_name = f"/{ENV}/{APP_NAME}/lemon-squeezy/api-key"
    if param_name in SSM_PARAMETER_CACHE:
        return SSM_PARAMETER_CACHE[param_name]

    try:
        response = ssm_client.get_parameter(Name=param_name, WithDecryption=True)
        api_key = response.get("Parameter", {}).get("Value")
        if api_key:
            SSM_PARAMETER_CACHE[param_name] = api_key
        return api_key or None
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"[validate-license] Could not read {param_name} from SSM: {e}")
        return None


def get_api_key() -> Optional[str]:
    """LEMON_SQUEEZY_API_KEY from the environment, then SSM."""
    return os.environ.get("LEMON_SQUEEZY_API_KEY") or get_api_key_from_ssm()


def mask_license_key(license_key: str) -> str:
    """Mask a license key for logging, keeping the last 4 characters."""
    if len(license_key) <= 4:
        return "****"
    return f"****{license_key[-4:]}"


# ============================================================================
# Response Helpers
# ============================================================================


def build_response(status_code: int, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build an API Gateway proxy response with CORS headers."""
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


def is_expired(expires_at: Optional[str], now: datetime) -> bool:
    """
    Check whether an ISO 8601 expiry timestamp is in the past.

    A missing or unparseable timestamp counts as not expired.
    """
    if not expires_at:
        return False

    try:
        expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"[validate-license] Unparseable expires_at: {expires_at}")
        return False

    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry < now


def interpret_validation_response(
    data: Dict[str, Any],
    now: Optional[datetime] = None,
) -> LicenseValidationResult:
    """
    Normalize a Lemon Squeezy validation response.

    Handles either a direct boolean `valid` or a license record with
    `data.attributes.status` and `data.attributes.expires_at`. A record is
    valid when its status is active and it has not expired.

    Args:
        data: Parsed vendor response
        now: Current time (defaults to UTC now)

    Returns:
        LicenseValidationResult: Normalized result
    """
    now = now or datetime.now(timezone.utc)
    if not isinstance(data, dict):
        data = {}

    if isinstance(data.get("valid"), bool):
        valid = data["valid"]
        return LicenseValidationResult(
            valid=valid,
            message="License is valid" if valid else (data.get("message") or "License is invalid or expired"),
        )

    record = data.get("data")
    attributes = record.get("attributes") if isinstance(record, dict) else None
    if isinstance(attributes, dict):
        status = attributes.get("status")
        expires_at = attributes.get("expires_at")
        expired = is_expired(expires_at, now)
        valid = status == "active" and not expired

        return LicenseValidationResult(
            valid=valid,
            message="License is valid" if valid else f"License is {status}{' and expired' if expired else ''}",
            status=status,
            expires_at=expires_at,
        )

    return LicenseValidationResult(
        valid=False,
        message="License validation failed - unexpected response format",
    )


# ============================================================================
# License Validation
# ============================================================================


def validate_license_key(license_key: str, api_key: str) -> requests.Response:
    """
    Call the Lemon Squeezy license validation endpoint.

    Args:
        license_key: License key from the extension
        api_key: Lemon Squeezy API key

    Returns:
        requests.Response: Raw vendor response

    Raises:
        requests.exceptions.RequestException: On network errors
    """
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "application/vnd.api+json",
    }

    return requests.post(
        LEMON_SQUEEZY_VALIDATE_URL,
        headers=headers,
        json={"license_key": license_key},
        timeout=LEMON_SQUEEZY_TIMEOUT_SECONDS,
    )


def process_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process the Lambda event and validate the license key.

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
        raw_body = event.get("body") or "{}"
        if event.get("isBase64Encoded"):
            raw_body = base64.b64decode(raw_body).decode("utf-8")

        try:
            body = json.loads(raw_body)
            request = ValidateLicenseRequest.model_validate(body if isinstance(body, dict) else {})
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"[validate-license] Invalid request body: {str(e)}")
            return build_response(400, {"error": "Invalid request body", "valid": False})

        if not request.license_key:
            return build_response(400, {"error": "License key is required"})

        api_key = get_api_key()
        if not api_key:
            logger.error("[validate-license] LEMON_SQUEEZY_API_KEY not configured")
            return build_response(500, {"error": "Server configuration error"})

        logger.info(f"[validate-license] Validating license {mask_license_key(request.license_key)}")
        response = validate_license_key(request.license_key, api_key)

        if not response.ok:
            logger.error(f"[validate-license] Lemon Squeezy API error {response.status_code}: {response.text[:500]}")
            return build_response(response.status_code, {
                "error": "License validation failed",
                "valid": False,
            })

        result = interpret_validation_response(response.json())
        logger.info(f"[validate-license] License {mask_license_key(request.license_key)} valid={result.valid}")

        return build_response(200, result.model_dump(by_alias=True, exclude_none=True))

    except Exception as e:
        logger.error(f"[validate-license] Error validating license: {str(e)}", exc_info=True)
        return build_response(500, {
            "error": "Internal server error",
            "valid": False,
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
    logger.info(f"[validate-license] Processing request: {get_http_method(event)}")
    return process_event(event)
