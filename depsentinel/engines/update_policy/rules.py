"""Package-rule matching and schedule windows."""

from __future__ import annotations

import re
from datetime import datetime

from depsentinel.core.config import WEEKDAYS, PackageRule, ScheduleWindow
from depsentinel.engines.manifest_scanner.models import Dependency


def rule_matches(rule: PackageRule, dep: Dependency, update_type: str | None = None) -> bool:
    """True when every non-empty matcher of *rule* accepts *dep*.

    ``matchUpdateTypes`` is only checked when *update_type* is known; a rule
    scoped to update types never matches a dependency as a whole.
    """
    if rule.match_package_names and dep.name not in rule.match_package_names:
        return False
    if rule.match_package_patterns and not any(
        re.search(pattern, dep.name) for pattern in rule.match_package_patterns
    ):
        return False
    if rule.match_managers and dep.manager not in rule.match_managers:
        return False
    if rule.match_ecosystems and dep.ecosystem not in rule.match_ecosystems:
        return False
    if rule.match_update_types:
        if update_type is None or update_type not in rule.match_update_types:
            return False
    return True


def is_ignore_rule(rule: PackageRule) -> bool:
    return not rule.enabled or bool(rule.ignore_versions)


def window_open(window: ScheduleWindow, moment: datetime) -> bool:
    """Whether *moment* (already in the configured timezone) falls in *window*."""
    day = WEEKDAYS[moment.weekday()]
    if day not in window.days:
        return False
    hhmm = moment.strftime("%H:%M")
    return window.start <= hhmm < window.end


def schedule_open(windows: list[ScheduleWindow] | None, moment: datetime) -> bool:
    """No schedule means always open; otherwise any open window suffices."""
    if not windows:
        return True
    return any(window_open(w, moment) for w in windows)
