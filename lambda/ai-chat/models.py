"""
Pydantic models for the ai-chat Lambda.

Defines the chat request contract, the workspace context snapshot sent by the
WorkTab extension, parsed action directives, and Claude response wrappers.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Workspace Context
# ============================================================================


class WorkspaceSummary(BaseModel):
    """
    A single workspace as reported by the extension.

    Attributes:
        id: Workspace identifier (e.g., "ws_123")
        name: Display name
        color: Color token (e.g., "blue-500")
        tab_count: Number of tabs saved in the workspace (rendered as sent)
    """

    id: str = ""
    name: str = ""
    color: str = ""
    tab_count: float = Field(default=0, alias="tabCount")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        coerce_numbers_to_str = True

    @field_validator("id", "name", "color", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value

    @field_validator("tab_count", mode="before")
    @classmethod
    def none_to_zero(cls, value):
        return 0 if value is None else value


class OpenTab(BaseModel):
    """An open browser tab (title and domain only)."""

    title: str = ""
    domain: str = ""

    class Config:
        """Pydantic configuration."""

        coerce_numbers_to_str = True

    @field_validator("title", "domain", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value


class HealthSummary(BaseModel):
    """Aggregate numbers from the Tab Health Dashboard."""

    total_memory: Optional[float] = Field(default=None, alias="totalMemory")
    average_health: Optional[float] = Field(default=None, alias="averageHealth")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True


class HealthWarning(BaseModel):
    """A performance warning raised by the Tab Health Dashboard."""

    message: str = ""

    class Config:
        """Pydantic configuration."""

        coerce_numbers_to_str = True

    @field_validator("message", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value


class TabHealth(BaseModel):
    """Per-tab memory usage from the Tab Health Dashboard."""

    title: Optional[str] = None
    url: Optional[str] = None
    memory: Optional[float] = None

    class Config:
        """Pydantic configuration."""

        coerce_numbers_to_str = True


class HealthData(BaseModel):
    """
    Tab Health Dashboard snapshot.

    Attributes:
        summary: Aggregate memory and health score
        warnings: Performance warnings, most important first
        tabs: Per-tab memory usage (unsorted)
    """

    summary: Optional[HealthSummary] = None
    warnings: List[HealthWarning] = Field(default_factory=list)
    tabs: List[TabHealth] = Field(default_factory=list)

    @field_validator("warnings", "tabs", mode="before")
    @classmethod
    def none_to_empty_list(cls, value):
        return [] if value is None else value


class WorkspaceContext(BaseModel):
    """
    Snapshot of the user's workspaces and tabs supplied by the extension.

    The counts are trusted verbatim and may differ from the list lengths,
    since the extension only sends a sample of its tabs.

    Attributes:
        workspaces: Workspaces in display order
        open_tabs: Sample of currently open tabs
        workspace_count: Total number of workspaces
        tab_count: Total number of open tabs
        settings: Extension settings (accepted but not rendered)
        health_data: Optional Tab Health Dashboard snapshot
    """

    workspaces: List[WorkspaceSummary] = Field(default_factory=list)
    open_tabs: List[OpenTab] = Field(default_factory=list, alias="openTabs")
    workspace_count: float = Field(default=0, alias="workspaceCount")
    tab_count: float = Field(default=0, alias="tabCount")
    settings: Dict[str, Any] = Field(default_factory=dict)
    health_data: Optional[HealthData] = Field(default=None, alias="healthData")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        json_schema_extra = {
            "example": {
                "workspaces": [
                    {"id": "ws_123", "name": "Research", "color": "blue-500", "tabCount": 4}
                ],
                "openTabs": [{"title": "Pull requests", "domain": "github.com"}],
                "workspaceCount": 1,
                "tabCount": 12,
            }
        }

    @field_validator("workspaces", "open_tabs", "settings", mode="before")
    @classmethod
    def none_to_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "settings" else []
        return value

    @field_validator("workspace_count", "tab_count", mode="before")
    @classmethod
    def none_to_zero(cls, value):
        return 0 if value is None else value


# ============================================================================
# Chat Request
# ============================================================================


class ChatTurn(BaseModel):
    """
    One message in the conversation.

    Any role is accepted on input; only user and assistant turns are
    forwarded to Claude. Content is coerced to a string when the
    conversation is built.
    """

    role: str = ""
    content: Any = ""

    class Config:
        """Pydantic configuration."""

        coerce_numbers_to_str = True

    @field_validator("role", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value


class CallerIdentity(BaseModel):
    """Caller identity derived from request headers or body."""

    id: str = "anonymous"
    is_pro: bool = False

    @property
    def tier(self) -> str:
        return "PRO" if self.is_pro else "FREE"


class ChatRequest(BaseModel):
    """
    Request schema for one chat turn.

    Attributes:
        message: The user's message (must be non-blank)
        history: Prior turns in chronological order
        context: Workspace context snapshot
        caller: Caller identity (resolved by the handler, not the body)
    """

    message: str = ""
    history: List[ChatTurn] = Field(default_factory=list)
    context: WorkspaceContext = Field(default_factory=WorkspaceContext)
    caller: CallerIdentity = Field(default_factory=CallerIdentity, exclude=True)

    class Config:
        """Pydantic configuration."""

        json_schema_extra = {
            "example": {
                "message": "Close all tabs in my Research workspace",
                "history": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello! How can I help?"},
                ],
                "context": {"workspaceCount": 1, "tabCount": 12},
            }
        }

    @field_validator("message", mode="before")
    @classmethod
    def none_to_blank(cls, value):
        return "" if value is None else value

    @field_validator("history", mode="before")
    @classmethod
    def none_to_empty_history(cls, value):
        return [] if value is None else value

    @field_validator("context", mode="before")
    @classmethod
    def none_to_empty_context(cls, value):
        return {} if value is None else value


# ============================================================================
# Action Directives
# ============================================================================


class ActionDirective(BaseModel):
    """An executable action parsed from a `<action:TYPE:PARAMS>` marker."""

    type: str
    params: Any = None


class MalformedDirective(BaseModel):
    """
    A marker whose parameter text is not valid JSON.

    Kept distinct from ActionDirective so callers can tell the two apart;
    `to_directive` degrades it to a `{"value": raw}` payload.
    """

    type: str
    raw: str

    def to_directive(self) -> ActionDirective:
        return ActionDirective(type=self.type, params={"value": self.raw})


# ============================================================================
# Claude Responses
# ============================================================================


class ClaudeUsage(BaseModel):
    """Token usage reported by the Anthropic Messages API."""

    input_tokens: int = 0
    output_tokens: int = 0


class ClaudeResponse(BaseModel):
    """
    Parsed Claude reply.

    Attributes:
        text: Raw reply text (may contain action markers)
        usage: Provider-reported usage, passed through to the caller untouched
        stop_reason: Why generation stopped (e.g., "end_turn")
    """

    text: str
    usage: Dict[str, Any] = Field(default_factory=dict)
    stop_reason: Optional[str] = None

    @property
    def token_usage(self) -> ClaudeUsage:
        return ClaudeUsage(
            input_tokens=self.usage.get("input_tokens", 0) or 0,
            output_tokens=self.usage.get("output_tokens", 0) or 0,
        )


class RateLimitStatus(BaseModel):
    """Remaining allowance included in the response when limiting is enabled."""

    remaining: int
    reset_at: str = Field(alias="resetAt")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True


class ChatTurnResult(BaseModel):
    """
    Outcome of one chat turn.

    Attributes:
        reply: Reply text with action markers removed
        actions: Parsed action directives in order of appearance
        usage: Provider-reported token usage
        rate_limit: Remaining allowance, only set when limiting is enabled
    """

    reply: str
    actions: List[ActionDirective] = Field(default_factory=list)
    usage: Dict[str, Any] = Field(default_factory=dict)
    rate_limit: Optional[RateLimitStatus] = None

    def to_response_body(self) -> Dict[str, Any]:
        """Render the HTTP response body; `actions` is omitted when empty."""
        body: Dict[str, Any] = {"response": self.reply}
        if self.actions:
            body["actions"] = [action.model_dump() for action in self.actions]
        body["usage"] = self.usage
        if self.rate_limit is not None:
            body["rateLimit"] = self.rate_limit.model_dump(by_alias=True)
        return body
