"""
Conduit - Discovery Log Filter

Discovery clients emit ``log`` events for their own housekeeping. Most are
forwarded to ``ServiceLifecycle.log``; entries matching a suppression rule are
dropped. Rules either look for a substring in the entry's message or for a
structured ``classification`` tag.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from discovery.protocols import LogEntry
from observability.logging import get_logger

logger = get_logger(__name__)

ROUTER_UNAVAILABLE_MESSAGE = "Unavailable hydra-router instances"
OPTIONAL_COLLABORATOR_UNAVAILABLE = "optional_collaborator_unavailable"


@dataclass(frozen=True)
class LogFilterRule:
    """Named suppression rule. A rule matches on substring or on classification."""

    name: str
    substring: Optional[str] = None
    classification: Optional[str] = None

    def matches(self, entry: LogEntry) -> bool:
        if self.classification is not None and entry.get("classification") == self.classification:
            return True
        if self.substring is not None:
            text = entry.get("msg")
            if not isinstance(text, str):
                text = entry.get("message")
            return isinstance(text, str) and self.substring in text
        return False


# The router is an optional collaborator; its absence is expected.
ROUTER_UNAVAILABLE_RULE = LogFilterRule(
    name="router_unavailable",
    substring=ROUTER_UNAVAILABLE_MESSAGE,
)
OPTIONAL_COLLABORATOR_RULE = LogFilterRule(
    name="optional_collaborator_unavailable",
    classification=OPTIONAL_COLLABORATOR_UNAVAILABLE,
)
DEFAULT_RULES = (ROUTER_UNAVAILABLE_RULE, OPTIONAL_COLLABORATOR_RULE)


class DiscoveryLogFilter:
    """
    ``log`` event handler installed on the discovery client.

    Args:
        sink: ``log(type, message)`` callable receiving forwarded entries
        rules: suppression rules, checked in order
    """

    def __init__(
        self,
        sink: Callable[[Any, Any], Any],
        rules: Sequence[LogFilterRule] = DEFAULT_RULES,
    ):
        self._sink = sink
        self.rules = tuple(rules)

    def match(self, entry: LogEntry) -> Optional[LogFilterRule]:
        for rule in self.rules:
            if rule.matches(entry):
                return rule
        return None

    def __call__(self, entry: Any) -> bool:
        """Handle one entry. Returns True when it was forwarded."""
        if not isinstance(entry, Mapping):
            self._sink("info", entry)
            return True

        rule = self.match(entry)
        if rule is not None:
            logger.debug("Discovery log entry suppressed", rule=rule.name)
            return False

        data: Dict[str, Any] = dict(entry)
        if data.get("msg"):
            data["message"] = data["msg"]
        self._sink(data.get("type"), data.get("message"))
        return True
