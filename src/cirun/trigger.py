# trigger.py
from __future__ import annotations

from typing import Iterable, List, Set

from .model import Event, Job, Pipeline, TriggerRule


def rule_matches(event: Event, rule: TriggerRule) -> bool:
    if rule.event is not event.kind:
        return False
    # no branch filter -> any ref
    if rule.branches is None:
        return True
    return event.ref in rule.branches


def should_run(event: Event, rules: Iterable[TriggerRule]) -> bool:
    """
    True if at least one rule matches the event.

    Matching is existence-only: several matching rules still mean one run,
    and no match is a normal outcome, not an error.
    """
    return any(rule_matches(event, r) for r in rules)


def select_jobs(event: Event, pipeline: Pipeline) -> List[Job]:
    """
    Jobs a run for `event` should contain, in document order.

    Empty when the triggers do not fire. Jobs restricted to other event
    kinds are left out, and so is anything that `needs` a left-out job.
    """
    if not should_run(event, pipeline.triggers):
        return []

    names: Set[str] = set()
    # pipeline.jobs is validated acyclic; iterate until nothing changes so
    # document order does not have to follow dependency order
    candidates = [j for j in pipeline.jobs if j.events is None or event.kind in j.events]
    changed = True
    while changed:
        changed = False
        for j in candidates:
            if j.name not in names and all(d in names for d in j.needs):
                names.add(j.name)
                changed = True

    return [j for j in pipeline.jobs if j.name in names]
