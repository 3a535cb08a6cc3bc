from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Set

from metamirror.core.workflow import Side
from metamirror.translator.history import LocationHistory
from metamirror.translator.utils import append_last_dir, reduce_url_by


@dataclass(frozen=True)
class CopyInstruction:
    target: str
    sources: List[str] = field(default_factory=list)
    # Manifest-backed copies keep the last segment of every source; direct
    # copies do not, so the single source's leaf is already in the target.
    manifest: bool = False


def build_plan(history: LocationHistory, database: str, side: Side,
               consolidation_level: int = 1) -> Dict[str, Set[str]]:
    """Group recorded locations by their consolidated target directory."""
    plan: Dict[str, Set[str]] = {}
    for entry in history.entries(database, side):
        reduced_target = reduce_url_by(entry.adjusted_target, consolidation_level)
        plan.setdefault(reduced_target, set()).add(entry.adjusted_original)
    return {target: plan[target] for target in sorted(plan)}


def plan_instructions(plan: Dict[str, Set[str]]) -> List[CopyInstruction]:
    instructions: List[CopyInstruction] = []
    for target in sorted(plan):
        sources = sorted(plan[target])
        if len(sources) == 1:
            instructions.append(CopyInstruction(target=append_last_dir(target, sources[0]),
                                                sources=sources, manifest=False))
        else:
            instructions.append(CopyInstruction(target=target, sources=sources, manifest=True))
    return instructions


def build_all_plans(history: LocationHistory, consolidation_level: int = 1) -> Dict[str, Dict[str, Dict[str, List[str]]]]:
    """Plans for every (database, side) in the history, in a serialisable shape."""
    plans: Dict[str, Dict[str, Dict[str, List[str]]]] = {}
    for database, side in history.keys():
        plan = build_plan(history, database, side, consolidation_level)
        plans.setdefault(database, {})[side.value] = {t: sorted(s) for t, s in plan.items()}
    return plans
