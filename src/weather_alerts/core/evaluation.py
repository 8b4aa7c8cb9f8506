"""Alert rule evaluation and solar flare severity ranking.

Every function here is pure: a rule and a snapshot in, a decision out.
Anything the evaluator does not recognize evaluates to False rather than
raising, so a malformed stored rule can never abort a scan pass.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Union

from .models import (
    AlertKind,
    Comparison,
    SpaceAlertRule,
    SpaceEvent,
    SpaceSnapshot,
    WeatherAlertRule,
    WeatherSnapshot,
)

logger = logging.getLogger(__name__)

STORM_CONDITIONS = frozenset({"Thunderstorm", "Squall"})
FLARE_EVENT_TYPE = "FLR"
EQUALS_TOLERANCE = 1.0

SEVERITY_LEVELS: dict[str, int] = {"C": 1, "M": 2, "X": 3}

_FLARE_CLASS_RE = re.compile(r"[CMX]\d")

Rule = Union[WeatherAlertRule, SpaceAlertRule]
Snapshot = Union[WeatherSnapshot, SpaceSnapshot]


# ─── Severity ranking ────────────────────────────────────────────────────────


def severity_level(letter: Optional[str]) -> Optional[int]:
    """Ordinal level for a flare class letter, or None if unknown."""
    if not letter:
        return None
    return SEVERITY_LEVELS.get(letter.upper())


def meets_severity(candidate: Optional[str], minimum: Optional[str]) -> bool:
    """True if candidate ranks at or above minimum. Unknown letters never meet."""
    cand = severity_level(candidate)
    floor = severity_level(minimum)
    if cand is None or floor is None:
        return False
    return cand >= floor


def parse_flare_severity(body: Optional[str]) -> Optional[str]:
    """Extract the flare class letter from a DONKI message body.

    Looks for the first letter-plus-digit class such as "M5" or "X1.2" and
    returns the letter. Returns None when the body carries no class, which
    fails any severity gate.
    """
    if not body:
        return None
    match = _FLARE_CLASS_RE.search(body)
    if match is None:
        return None
    return match.group(0)[0]


# ─── Weather rules ───────────────────────────────────────────────────────────


def compare(value: float, condition: Optional[str], threshold: float) -> bool:
    """Apply a rule comparison. `equals` is a ±1 unit band, not exact equality."""
    if condition == Comparison.ABOVE.value:
        return value > threshold
    if condition == Comparison.BELOW.value:
        return value < threshold
    if condition == Comparison.EQUALS.value:
        return abs(value - threshold) < EQUALS_TOLERANCE
    return False


def evaluate_weather(rule: WeatherAlertRule, snapshot: WeatherSnapshot) -> bool:
    if rule.alert_type == AlertKind.STORM.value:
        return any(c in STORM_CONDITIONS for c in snapshot.conditions)

    if rule.threshold is None:
        return False

    value = snapshot.metric(rule.alert_type)
    if value is None:
        return False
    return compare(value, rule.condition, rule.threshold)


# ─── Space weather rules ─────────────────────────────────────────────────────


def event_matches(rule: SpaceAlertRule, event: SpaceEvent) -> bool:
    """True if one event satisfies a space rule's type and severity gates."""
    if event.message_type not in rule.alert_types:
        return False
    if event.message_type == FLARE_EVENT_TYPE:
        return meets_severity(parse_flare_severity(event.body), rule.min_severity)
    return True


def matching_events(rule: SpaceAlertRule, snapshot: SpaceSnapshot) -> list[SpaceEvent]:
    """All events in the snapshot that satisfy the rule, in feed order."""
    return [e for e in snapshot.events if event_matches(rule, e)]


def evaluate_space(rule: SpaceAlertRule, snapshot: SpaceSnapshot) -> bool:
    return any(event_matches(rule, e) for e in snapshot.events)


# ─── Entry point ─────────────────────────────────────────────────────────────


def evaluate(rule: Rule, snapshot: Snapshot) -> bool:
    """Decide whether a rule triggers for a snapshot.

    Mismatched rule/snapshot pairs and unrecognized rule types are False.
    """
    if isinstance(rule, WeatherAlertRule) and isinstance(snapshot, WeatherSnapshot):
        return evaluate_weather(rule, snapshot)
    if isinstance(rule, SpaceAlertRule) and isinstance(snapshot, SpaceSnapshot):
        return evaluate_space(rule, snapshot)
    logger.debug("No evaluator for %s against %s", type(rule).__name__, type(snapshot).__name__)
    return False
