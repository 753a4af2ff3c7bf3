from depsentinel.engines.change_planner.edits import StaleEdit, apply_edits, unified_diff
from depsentinel.engines.change_planner.models import (
    ChangeSet,
    DeferredChangeSet,
    ManifestEdit,
    Plan,
    Superseded,
)
from depsentinel.engines.change_planner.planner import ChangePlanner, plan, slugify

__all__ = [
    "ChangePlanner",
    "ChangeSet",
    "DeferredChangeSet",
    "ManifestEdit",
    "Plan",
    "StaleEdit",
    "Superseded",
    "apply_edits",
    "plan",
    "slugify",
    "unified_diff",
]
