"""
Accumulation of streamed function-call arguments.

The Realtime API streams a function call's JSON arguments as a series of
``response.function_call_arguments.delta`` events followed by a single ``.done``
event. Fragments for the same call id are concatenated in arrival order; a call
that streamed no fragments falls back to the complete ``arguments`` carried by
the done event.
"""

import json
from typing import Any, Dict, Optional


class ToolCallArgumentsError(ValueError):
    """Raised when a completed function call's arguments are not a JSON object."""


class PendingToolCalls:
    """In-flight function calls keyed by provider call id."""

    def __init__(self):
        self._fragments: Dict[str, str] = {}

    def append(self, call_id: str, delta: str) -> None:
        self._fragments[call_id] = self._fragments.get(call_id, "") + (delta or "")

    def complete(self, call_id: str, arguments: Optional[str] = None) -> str:
        """
        Finish a call and return its full argument text.

        The accumulated fragments win over the done event's own ``arguments``;
        the entry is discarded either way.
        """
        accumulated = self._fragments.pop(call_id, "")
        return accumulated or arguments or "{}"

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._fragments

    def __len__(self) -> int:
        return len(self._fragments)


def parse_arguments(arguments: str) -> Dict[str, Any]:
    """
    Decode function-call arguments.

    Raises:
        ToolCallArgumentsError: If the text is not valid JSON or not an object
    """
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ToolCallArgumentsError(f"Invalid function arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise ToolCallArgumentsError("Function arguments must be a JSON object")
    return parsed
