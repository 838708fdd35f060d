"""
Chat orchestration for the WorkTab AI assistant.

One chat turn:
1. Validates the message and checks the caller's rate limit
2. Builds the system prompt from the workspace context
3. Builds the bounded conversation window
4. Invokes Claude
5. Parses action markers and strips them from the reply
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from action_parser import parse_actions, strip_action_markers
from anthropic_client import AnthropicClient
from conversation import HISTORY_WINDOW, build_conversation
from errors import InputError, RateLimitExceeded
from models import (
    ActionDirective,
    ChatRequest,
    ChatTurn,
    ChatTurnResult,
    ClaudeResponse,
    WorkspaceContext,
)
from prompt_builder import ACTION_TYPES, build_system_prompt
from rate_limiter import RateLimiter

logger = logging.getLogger()


class ChatOrchestrator:
    """Runs chat turns against an injected model client and rate limiter."""

    def __init__(
        self,
        model_client: AnthropicClient,
        rate_limiter: Optional[RateLimiter] = None,
        history_window: int = HISTORY_WINDOW,
    ):
        """
        Initialize orchestrator.

        Args:
            model_client: Client for the Anthropic Messages API
            rate_limiter: Limiter applied before the model call (disabled if omitted)
            history_window: Number of history entries sent with each turn
        """
        self.model_client = model_client
        self.rate_limiter = rate_limiter or RateLimiter()
        self.history_window = history_window

    def build_system_prompt(self, context: Union[WorkspaceContext, Dict[str, Any], None]) -> str:
        return build_system_prompt(context)

    def build_conversation(
        self,
        history: Iterable[Union[ChatTurn, Dict[str, Any]]],
        current_message: str,
    ) -> List[ChatTurn]:
        return build_conversation(history, current_message, window=self.history_window)

    def invoke_model(
        self,
        system_prompt: str,
        conversation: List[ChatTurn],
        max_tokens: Optional[int] = None,
    ) -> ClaudeResponse:
        return self.model_client.invoke(system_prompt, conversation, max_tokens=max_tokens)

    def parse_actions(self, raw_text: str) -> List[ActionDirective]:
        return parse_actions(raw_text)

    def strip_action_markers(self, raw_text: str) -> str:
        return strip_action_markers(raw_text)

    def run_turn(self, request: ChatRequest) -> ChatTurnResult:
        """
        Run one chat turn end to end.

        Args:
            request: Validated chat request with resolved caller identity

        Returns:
            ChatTurnResult: Cleaned reply, parsed actions and token usage

        Raises:
            InputError: If the message is blank (no external call is made)
            RateLimitExceeded: If the caller is over an hourly or daily limit
            ConfigurationError: If no Anthropic API key is available
            UpstreamError: If the Anthropic API returns a non-success status
            UpstreamContractError: If the Anthropic reply has no text
            InternalError: On transport failure
        """
        if not request.message or not request.message.strip():
            raise InputError("Message is required")

        caller = request.caller
        decision = self.rate_limiter.check(caller)
        if not decision.allowed:
            raise RateLimitExceeded(decision)

        self.model_client.ensure_configured()

        system_prompt = self.build_system_prompt(request.context)
        conversation = self.build_conversation(request.history, request.message)
        max_tokens = self.rate_limiter.max_tokens_for(caller, self.model_client.max_tokens)

        logger.info(
            f"[ai-chat] Running turn for {caller.id} ({caller.tier}): "
            f"{len(conversation)} messages, max_tokens={max_tokens}"
        )

        reply = self.invoke_model(system_prompt, conversation, max_tokens=max_tokens)

        actions = self.parse_actions(reply.text)
        cleaned = self.strip_action_markers(reply.text)

        if actions:
            logger.info(f"[ai-chat] Parsed {len(actions)} actions: {[action.type for action in actions]}")
            unknown = [action.type for action in actions if action.type not in ACTION_TYPES]
            if unknown:
                # Still returned to the caller
                logger.warning(f"[ai-chat] Reply used action types outside the catalogue: {unknown}")

        return ChatTurnResult(
            reply=cleaned,
            actions=actions,
            usage=reply.usage,
            rate_limit=decision.status() if self.rate_limiter.enabled else None,
        )
