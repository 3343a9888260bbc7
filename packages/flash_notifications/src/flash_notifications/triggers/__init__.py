"""
Domain - Trigger Engine.

Triggers are pure functions that compute the next fire time based on:
- The trigger state (occurrences consumed so far, last fire time)
- Current time (now)

All triggers are deterministic - same inputs always produce same outputs.
No I/O, no asyncio calls, no side effects.
"""

from typing import Any, Dict, Type

from flash_notifications.schemas import (
    AtTriggerConfig,
    EveryIntervalTriggerConfig,
    EveryMatchTriggerConfig,
    InTriggerConfig,
)

from .base import Fire, Trigger, TriggerState
from .interval import IntervalTrigger, add_units
from .match import DEFAULT_MAX_LOOKAHEAD_YEARS, MatchTrigger

_TRIGGER_REGISTRY: Dict[Type[Any], Type[Trigger]] = {
    AtTriggerConfig: IntervalTrigger,
    InTriggerConfig: IntervalTrigger,
    EveryIntervalTriggerConfig: IntervalTrigger,
    EveryMatchTriggerConfig: MatchTrigger,
}


def create_trigger(
    config: Any,
    max_lookahead_years: int = DEFAULT_MAX_LOOKAHEAD_YEARS,
) -> Trigger:
    """
    Create a Trigger implementation from a trigger configuration.

    The variant is chosen once here; callers only ever talk to the
    ``Trigger`` interface afterwards.

    Raises:
        TypeError: If the configuration type is not supported.

    Examples:
        >>> trigger = create_trigger(AtTriggerConfig(at=run_at))
        >>> isinstance(trigger, IntervalTrigger)
        True
    """
    trigger_cls = _TRIGGER_REGISTRY.get(type(config))
    if not trigger_cls:
        msg = f"Unsupported trigger config: {type(config).__name__}"
        raise TypeError(msg)
    if trigger_cls is MatchTrigger:
        return MatchTrigger(config, max_lookahead_years=max_lookahead_years)
    return trigger_cls(config)  # type: ignore[call-arg]


__all__ = [
    "Fire",
    "Trigger",
    "TriggerState",
    "IntervalTrigger",
    "MatchTrigger",
    "add_units",
    "create_trigger",
]
