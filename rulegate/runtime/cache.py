"""
Publication of compiled rule sets.

A rebuilt rule set replaces the previous one with a single reference swap.
Readers take the current reference once per request and evaluate against
it without locking; a set already handed out is never modified.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from rulegate.compiler.ir import CompiledRuleSet

logger = logging.getLogger(__name__)


class RuleSetHolder:
    """Thread-safe holder for the currently published CompiledRuleSet."""

    def __init__(self):
        self._current: CompiledRuleSet | None = None
        self._generation = 0
        self._published_at: str | None = None
        self._lock = threading.RLock()

    def publish(self, rule_set: CompiledRuleSet) -> int:
        """Make a rule set current.

        Args:
            rule_set: Fully compiled rule set

        Returns:
            The new generation number
        """
        with self._lock:
            self._current = rule_set
            self._generation += 1
            self._published_at = datetime.now(timezone.utc).isoformat()
            logger.info("Published rule set generation %d (%d rules)", self._generation, len(rule_set))
            return self._generation

    def current(self) -> CompiledRuleSet | None:
        return self._current

    def snapshot(self) -> tuple[int, CompiledRuleSet | None]:
        """Generation and rule set, read together."""
        with self._lock:
            return self._generation, self._current

    def clear(self) -> None:
        with self._lock:
            self._current = None
            self._published_at = None

    @property
    def generation(self) -> int:
        return self._generation

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "generation": self._generation,
                "published_at": self._published_at,
                "rules": len(self._current) if self._current is not None else 0,
            }


# Global holder instance
_holder: RuleSetHolder | None = None


def get_rule_set_holder() -> RuleSetHolder:
    """Get the global rule set holder."""
    global _holder
    if _holder is None:
        _holder = RuleSetHolder()
    return _holder


def reset_rule_set_holder() -> None:
    """Reset the global holder (for testing)."""
    global _holder
    _holder = None
