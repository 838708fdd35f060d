"""
Action marker parsing.

Claude requests client-side operations by embedding markers of the form
`<action:TYPE:PARAMS>` in its reply. TYPE contains no `:` or `>`; PARAMS is
JSON (or an opaque string) and runs up to the first `>`.
"""

import json
import logging
import re
from typing import List, Union

from models import ActionDirective, MalformedDirective

logger = logging.getLogger()

ACTION_PATTERN = re.compile(r"<action:([^:>]+):([^>]+)>")
MARKER_PATTERN = re.compile(r"<action:[^>]+>")


def _reject_constant(name: str):
    # json.loads accepts NaN/Infinity, which are not JSON
    raise ValueError(f"Invalid JSON constant: {name}")


def scan_directives(raw_text: str) -> List[Union[ActionDirective, MalformedDirective]]:
    """
    Find every action marker in left-to-right order.

    Args:
        raw_text: Claude's reply text

    Returns:
        List of ActionDirective (JSON params) or MalformedDirective (params
        that are not valid JSON)
    """
    directives = []
    for match in ACTION_PATTERN.finditer(raw_text or ""):
        action_type, params = match.group(1), match.group(2)
        try:
            parsed = json.loads(params, parse_constant=_reject_constant)
        except (ValueError, RecursionError):
            # RecursionError: nesting deeper than the JSON decoder can follow
            logger.info(f"[ai-chat] Action '{action_type}' has non-JSON params, keeping raw value")
            directives.append(MalformedDirective(type=action_type, raw=params))
            continue
        directives.append(ActionDirective(type=action_type, params=parsed))
    return directives


def parse_actions(raw_text: str) -> List[ActionDirective]:
    """
    Parse action markers into directives.

    A marker whose params are not JSON is never dropped; it degrades to
    `{"value": <raw params>}`.

    Args:
        raw_text: Claude's reply text

    Returns:
        List[ActionDirective]: Directives in order of appearance
    """
    return [
        item.to_directive() if isinstance(item, MalformedDirective) else item
        for item in scan_directives(raw_text)
    ]


def strip_action_markers(raw_text: str) -> str:
    """
    Remove every action marker and trim surrounding whitespace.

    Runs on the raw reply independently of `parse_actions`, so markers are
    removed even when their params fail to parse.

    Args:
        raw_text: Claude's reply text

    Returns:
        str: Text safe to show the user
    """
    return MARKER_PATTERN.sub("", raw_text or "").strip()
