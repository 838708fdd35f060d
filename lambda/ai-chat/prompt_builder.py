"""
System prompt construction for the WorkTab AI assistant.

Renders the user's workspace context (workspaces, open tabs, Tab Health
Dashboard data) into the system prompt, followed by the static catalogue of
action markers the extension knows how to execute.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from models import HealthData, TabHealth, WorkspaceContext

logger = logging.getLogger()

# Prompt size limits
MAX_LISTED_WORKSPACES = 10
MAX_LISTED_TABS = 10
MAX_HEALTH_WARNINGS = 5
MAX_HIGH_MEMORY_TABS = 5

WORKSPACE_COLORS = (
    "blue-500",
    "green-500",
    "red-500",
    "yellow-500",
    "purple-500",
    "pink-500",
    "indigo-500",
    "sky-500",
)

ACTION_TYPES = (
    "close_workspace_tabs",
    "delete_workspace",
    "create_workspace",
    "close_tabs",
    "get_health_dashboard",
)


# ============================================================================
# Static Prompt Text
# ============================================================================


PRODUCT_PREAMBLE = """You are WorkTab AI Assistant, a helpful assistant for the WorkTab browser extension.

WorkTab helps users organize browser tabs into workspaces. You can help users:
- Organize their tabs into workspaces
- Suggest workspace names based on tabs
- Answer questions about WorkTab features
- Provide productivity tips for tab management
- Help with workspace organization

WorkTab features:
- Workspaces: save groups of tabs under a name and color, and reopen them later
- Tab search: find any open tab by title or domain
- Tab Health Dashboard (Pro): memory usage, health scores and performance warnings per tab
- AI Assistant: Free users get a small daily message allowance, Pro users get a much higher one"""

ACTION_CATALOGUE = f"""AVAILABLE ACTIONS (use these when user requests actions):
You can execute actions by including action markers in your response. Format: <action:TYPE:PARAMS>

Available action types:
1. close_workspace_tabs - Close all tabs in a workspace
   Format: <action:close_workspace_tabs:{{"workspaceId":"ws_123"}}>
   Note: Use the workspaceId from the workspaces list above

2. delete_workspace - Delete a workspace
   Format: <action:delete_workspace:{{"workspaceId":"ws_123"}}>
   Note: Use the workspaceId from the workspaces list above

3. create_workspace - Create a new workspace
   Format: <action:create_workspace:{{"name":"Workspace Name","color":"blue-500","tabs":[]}}>
   Colors: {", ".join(WORKSPACE_COLORS)}

4. close_tabs - Close specific tabs by URL
   Format: <action:close_tabs:{{"urls":["https://example.com"]}}>

5. get_health_dashboard - Get health dashboard data (already included if available)

When user requests an action:
- Confirm the action in your response text
- Include the action marker at the end
- Be specific about what will happen

Example response:
"I'll close all tabs in the 'Research' workspace for you. <action:close_workspace_tabs:{{"workspaceId":"ws_123"}}>"

Be concise, helpful, and action-oriented. When suggesting actions, be specific.
If the user asks about organizing tabs, provide concrete suggestions based on their current tabs.
If they ask about WorkTab features, explain clearly and provide examples.
If a Free user asks about a Pro feature, explain what it does and mention that it is part of WorkTab Pro. Never claim a Pro feature is unavailable to Pro users.
Keep responses under 300 words unless the user asks for detailed information."""


# ============================================================================
# Formatting Helpers
# ============================================================================


def pluralize(count: float, noun: str) -> str:
    """
    Format a count with a naively pluralized noun.

    Args:
        count: Number of items
        noun: Singular noun (e.g., "workspace")

    Returns:
        str: "1 workspace" or "2 workspaces"
    """
    return f"{format_number(count)} {noun}{'' if count == 1 else 's'}"


def format_number(value: Optional[float]) -> str:
    """Render a number without a trailing `.0` for whole values."""
    if value is None:
        return "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _or_na(value: Optional[float]) -> str:
    # Zero and missing both render as N/A
    return format_number(value) if value else "N/A"


# ============================================================================
# Section Renderers
# ============================================================================


def render_workspaces(context: WorkspaceContext) -> List[str]:
    """Render the numbered workspace list with ids for use in actions."""
    if not context.workspaces:
        return []

    lines = ["", "Current workspaces (use workspaceId in actions):"]
    for index, workspace in enumerate(context.workspaces[:MAX_LISTED_WORKSPACES], start=1):
        lines.append(
            f'  {index}. "{workspace.name}" (ID: {workspace.id}, '
            f"{format_number(workspace.tab_count)} tabs, color: {workspace.color})"
        )

    hidden = len(context.workspaces) - MAX_LISTED_WORKSPACES
    if hidden > 0:
        lines.append(f"  ... and {hidden} more workspaces")

    lines.append("")
    lines.append(
        "IMPORTANT: When executing actions on workspaces, use the workspaceId from the list above. "
        "Copy it exactly and never invent a workspaceId."
    )
    return lines


def render_open_tabs(context: WorkspaceContext) -> List[str]:
    """Render a sample of open tabs as `title (domain)`."""
    if not context.open_tabs:
        return []

    lines = ["", "Open tabs (sample):"]
    for index, tab in enumerate(context.open_tabs[:MAX_LISTED_TABS], start=1):
        lines.append(f"  {index}. {tab.title} ({tab.domain})")

    hidden = len(context.open_tabs) - MAX_LISTED_TABS
    if hidden > 0:
        lines.append(f"  ... and {hidden} more tabs")
    return lines


def top_memory_tabs(tabs: List[TabHealth], limit: int = MAX_HIGH_MEMORY_TABS) -> List[TabHealth]:
    """
    Return the tabs using the most memory, highest first.

    The sort is stable, so tabs with equal memory keep their input order.
    Missing memory values count as 0. The input list is not modified.

    Args:
        tabs: Per-tab health entries
        limit: Maximum number of tabs to return

    Returns:
        List[TabHealth]: Up to `limit` tabs
    """
    return sorted(tabs, key=lambda tab: tab.memory or 0, reverse=True)[:limit]


def render_health(health: HealthData) -> List[str]:
    """
    Render Tab Health Dashboard numbers so performance advice is grounded
    in measured values.
    """
    lines = ["", "", "Tab Health Dashboard Data (use this to provide performance tips):"]

    if health.summary is not None:
        lines.append(f"- Total Memory: {_or_na(health.summary.total_memory)} MB")
        lines.append(f"- Average Health Score: {_or_na(health.summary.average_health)}/100")
        lines.append(f"- Warnings: {len(health.warnings)}")

    if health.warnings:
        lines.append("Performance Warnings:")
        for index, warning in enumerate(health.warnings[:MAX_HEALTH_WARNINGS], start=1):
            lines.append(f"  {index}. {warning.message}")
        lines.extend([
            "",
            "When users ask about performance or browser slowdown, reference these warnings and suggest:",
            "- Closing unused tabs",
            "- Suspending inactive tabs",
            "- Using workspaces to organize tabs",
            "- Checking the Health Dashboard for specific issues",
        ])

    if health.tabs:
        lines.append("")
        lines.append(f"High Memory Tabs (top {MAX_HIGH_MEMORY_TABS}):")
        for index, tab in enumerate(top_memory_tabs(health.tabs), start=1):
            label = tab.title or tab.url or ""
            lines.append(f"  {index}. {label} - {format_number(tab.memory)} MB")

    return lines


# ============================================================================
# System Prompt
# ============================================================================


def build_system_prompt(context: Union[WorkspaceContext, Dict[str, Any], None] = None) -> str:
    """
    Build the system prompt for a chat turn.

    The output depends only on the context, so identical input always
    produces the identical prompt.

    Args:
        context: Workspace context (model or raw dict from the request body)

    Returns:
        str: System prompt text
    """
    if not isinstance(context, WorkspaceContext):
        context = WorkspaceContext.model_validate(context or {})

    lines = [
        PRODUCT_PREAMBLE,
        "",
        "Current user context:",
        f"- User has {pluralize(context.workspace_count, 'workspace')}",
        f"- User has {pluralize(context.tab_count, 'open tab')}",
    ]

    lines.extend(render_workspaces(context))
    lines.extend(render_open_tabs(context))

    if context.health_data is not None:
        lines.extend(render_health(context.health_data))

    lines.append("")
    lines.append("")
    lines.append(ACTION_CATALOGUE)

    prompt = "\n".join(lines)
    logger.debug(f"[ai-chat] Built system prompt: {len(prompt)} chars")
    return prompt
