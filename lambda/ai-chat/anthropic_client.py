"""
Anthropic Messages API client.

Handles communication with Claude over HTTPS and maps failures onto the
ai-chat error taxonomy.
"""

import logging
import os
import random
import time
from typing import Callable, Dict, List, Optional

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from conversation import to_messages
from errors import (
    ConfigurationError,
    InternalError,
    UpstreamContractError,
    UpstreamError,
)
from models import ChatTurn, ClaudeResponse

logger = logging.getLogger()

# AWS clients (once per container)
ssm_client = boto3.client("ssm")

# Environment variables
ENV = os.environ.get("ENV", "dev")
APP_NAME = os.environ.get("APP_NAME", "worktab-api")

# Claude model configuration
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MODEL = os.environ.get("ANTHROPIC_MODEL", "claude-3-haiku-20240307")
ANTHROPIC_MAX_TOKENS = int(os.environ.get("ANTHROPIC_MAX_TOKENS", "1024"))
ANTHROPIC_TIMEOUT_SECONDS = float(os.environ.get("ANTHROPIC_TIMEOUT_SECONDS", "30"))
ANTHROPIC_MAX_RETRIES = int(os.environ.get("ANTHROPIC_MAX_RETRIES", "0"))

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504, 529)
RETRY_BASE_DELAY_SECONDS = 1.0
RETRY_MAX_DELAY_SECONDS = 8.0

# SSM values by parameter name; only successful reads are kept
SSM_PARAMETER_CACHE: Dict[str, str] = {}


# ============================================================================
# Authentication
# ============================================================================


def get_api_key_from_ssm() -> Optional[str]:
    """
    Fetch the Anthropic API key from SSM Parameter Store.

    A found key is cached per container. A missing parameter or an SSM
    failure yields None, is not cached, and is retried on the next call.

    Returns:
        str: API key, or None if unavailable
    """
    param_name = f"/{ENV}/{APP_NAME}/anthropic/api-key"
    if param_name in SSM_PARAMETER_CACHE:
        return SSM_PARAMETER_CACHE[param_name]

    try:
        response = ssm_client.get_parameter(Name=param_name, WithDecryption=True)
        api_key = response.get("Parameter", {}).get("Value")
        if api_key:
            logger.info(f"[anthropic] Retrieved API key from SSM: {param_name}")
            SSM_PARAMETER_CACHE[param_name] = api_key
        return api_key or None

    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        if error_code == "ParameterNotFound":
            logger.warning(f"[anthropic] API key parameter not found: {param_name}")
        else:
            logger.error(f"[anthropic] Failed to retrieve API key from SSM: {e}")
        return None

    except BotoCoreError as e:
        logger.error(f"[anthropic] Failed to reach SSM: {e}")
        return None


def get_api_key() -> Optional[str]:
    """
    Resolve the Anthropic API key.

    The ANTHROPIC_API_KEY environment variable wins over SSM.

    Returns:
        str: API key, or None if not configured anywhere
    """
    return os.environ.get("ANTHROPIC_API_KEY") or get_api_key_from_ssm()


def get_headers(api_key: str) -> dict:
    """
    Get Anthropic API request headers.

    Args:
        api_key: Anthropic API key

    Returns:
        dict: Headers for Messages API requests
    """
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }


# ============================================================================
# Claude Invocation
# ============================================================================


class AnthropicClient:
    """
    Thin client for the Anthropic Messages API.

    The API key is resolved lazily, so constructing a client never touches
    SSM and requests rejected before the model call make no external calls.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_key_loader: Callable[[], Optional[str]] = get_api_key,
        model: str = ANTHROPIC_MODEL,
        max_tokens: int = ANTHROPIC_MAX_TOKENS,
        timeout: float = ANTHROPIC_TIMEOUT_SECONDS,
        max_retries: int = ANTHROPIC_MAX_RETRIES,
    ):
        """
        Initialize the client.

        Args:
            api_key: Explicit API key (skips the loader)
            api_key_loader: Called once to resolve the key when none is given
            model: Claude model id
            max_tokens: Default token ceiling per reply
            timeout: HTTP timeout in seconds
            max_retries: Extra attempts for 429/5xx responses (0 disables retry)
        """
        self._api_key = api_key
        self._api_key_loader = api_key_loader
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max(0, max_retries)

    @property
    def api_key(self) -> Optional[str]:
        if self._api_key is None and self._api_key_loader is not None:
            self._api_key = self._api_key_loader()
        return self._api_key

    def ensure_configured(self) -> None:
        """
        Raises:
            ConfigurationError: If no API key is available
        """
        if not self.api_key:
            logger.error("[anthropic] ANTHROPIC_API_KEY not configured")
            raise ConfigurationError()

    def _retry_delay(self, attempt: int) -> float:
        # Exponential backoff with full jitter on top
        delay = min(RETRY_MAX_DELAY_SECONDS, RETRY_BASE_DELAY_SECONDS * (2 ** attempt))
        return delay + random.uniform(0, RETRY_BASE_DELAY_SECONDS)

    def _post(self, payload: dict) -> requests.Response:
        headers = get_headers(self.api_key)

        for attempt in range(self.max_retries + 1):
            try:
                response = requests.post(
                    ANTHROPIC_API_URL,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"[anthropic] Request to Anthropic API failed: {e}")
                raise InternalError(f"Failed to reach AI service: {e}") from e

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                wait_time = self._retry_delay(attempt)
                logger.warning(
                    f"[anthropic] Anthropic API returned {response.status_code}, retrying in "
                    f"{wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries + 1})"
                )
                time.sleep(wait_time)
                continue

            return response

        return response

    def invoke(
        self,
        system_prompt: str,
        conversation: List[ChatTurn],
        max_tokens: Optional[int] = None,
    ) -> ClaudeResponse:
        """
        Send one Messages API request.

        Args:
            system_prompt: System prompt text
            conversation: Turns ending with the current user message
            max_tokens: Token ceiling for this reply (defaults to the client's)

        Returns:
            ClaudeResponse: Reply text, usage and stop reason

        Raises:
            ConfigurationError: If no API key is available
            UpstreamError: On a non-success status (401 means an invalid key)
            UpstreamContractError: If the reply has no text content
            InternalError: On network or transport failure
        """
        self.ensure_configured()

        payload = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "system": system_prompt,
            "messages": to_messages(conversation),
        }

        logger.info(
            f"[anthropic] Invoking {self.model} with {len(conversation)} messages, "
            f"{len(system_prompt)} char system prompt"
        )

        response = self._post(payload)

        if not response.ok:
            logger.error(f"[anthropic] Anthropic API error {response.status_code}: {response.text[:500]}")
            details = "Invalid API key" if response.status_code == 401 else "Failed to get AI response"
            raise UpstreamError(response.status_code, details)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[anthropic] Anthropic API returned non-JSON body: {e}")
            raise UpstreamContractError() from e

        content = data.get("content") if isinstance(data, dict) else None
        first_block = content[0] if isinstance(content, list) and content else None
        text = first_block.get("text") if isinstance(first_block, dict) else None

        if not text or not isinstance(text, str):
            logger.error("[anthropic] Anthropic API response has no text content")
            raise UpstreamContractError()

        reply = ClaudeResponse(
            text=text,
            usage=data.get("usage") or {},
            stop_reason=data.get("stop_reason"),
        )
        token_usage = reply.token_usage

        logger.info(
            f"[anthropic] Claude response: {len(text)} chars, "
            f"{token_usage.input_tokens} input tokens, "
            f"{token_usage.output_tokens} output tokens, "
            f"stop_reason={reply.stop_reason}"
        )

        return reply
