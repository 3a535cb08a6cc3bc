from typing import Dict, FrozenSet
from metamirror.core.errors import InvalidPhaseTransition
from metamirror.core.workflow import PhaseState

_ALLOWED: Dict[PhaseState, FrozenSet[PhaseState]] = {
    PhaseState.INIT: frozenset({PhaseState.STARTED, PhaseState.ERROR}),
    PhaseState.STARTED: frozenset({PhaseState.CALCULATING_SQL, PhaseState.ERROR}),
    PhaseState.CALCULATING_SQL: frozenset({
        PhaseState.CALCULATED_SQL, PhaseState.CALCULATED_SQL_WARNING, PhaseState.ERROR,
    }),
    PhaseState.CALCULATED_SQL: frozenset({PhaseState.APPLYING_SQL, PhaseState.PROCESSED, PhaseState.ERROR}),
    PhaseState.CALCULATED_SQL_WARNING: frozenset({
        PhaseState.APPLYING_SQL, PhaseState.PROCESSED, PhaseState.ERROR,
    }),
    PhaseState.APPLYING_SQL: frozenset({PhaseState.PROCESSED, PhaseState.ERROR}),
    # Reruns skip work already done instead of redoing it.
    PhaseState.PROCESSED: frozenset({PhaseState.RETRY_SKIPPED_PAST_SUCCESS}),
    PhaseState.ERROR: frozenset(),
    PhaseState.RETRY_SKIPPED_PAST_SUCCESS: frozenset(),
}

TERMINAL = frozenset({PhaseState.PROCESSED, PhaseState.ERROR, PhaseState.RETRY_SKIPPED_PAST_SUCCESS})


def can_transition(current: PhaseState, target: PhaseState) -> bool:
    return target in _ALLOWED[current]


def check_transition(table: str, current: PhaseState, target: PhaseState) -> None:
    if not can_transition(current, target):
        raise InvalidPhaseTransition(table, current, target)


def is_success(phase: PhaseState) -> bool:
    return phase in (PhaseState.PROCESSED, PhaseState.RETRY_SKIPPED_PAST_SUCCESS)
