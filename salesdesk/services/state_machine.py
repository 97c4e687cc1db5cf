"""Table-driven transitions shared by deals, reservation forms, contracts and unit blocks."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind

# A guard returns a failure message, or None when the transition may proceed.
Guard = Callable[[Any], Optional[str]]


@dataclass(frozen=True)
class Transition:
    event: str
    sources: FrozenSet[str]
    target: Optional[str]
    roles: FrozenSet[str] = frozenset()
    owner_allowed: bool = False
    field: str = "status"
    guard: Optional[Guard] = None


def transition(
    event: str,
    sources: Iterable[str],
    target: Optional[str],
    roles: Iterable[str] = (),
    *,
    owner_allowed: bool = False,
    field: str = "status",
    guard: Optional[Guard] = None,
) -> Transition:
    return Transition(
        event=event,
        sources=frozenset(sources),
        target=target,
        roles=frozenset(roles),
        owner_allowed=owner_allowed,
        field=field,
        guard=guard,
    )


class StateMachine:
    def __init__(self, entity: str, transitions: Iterable[Transition]) -> None:
        self.entity = entity
        self.transitions: Dict[str, Transition] = {item.event: item for item in transitions}

    def check(self, event: str, record: Any, actor: Actor, owner_id: Optional[int] = None) -> Transition:
        """Role first, then source state, then guard; raises without touching the record."""
        rule = self.transitions.get(event)
        if rule is None:
            raise DomainError(ErrorKind.INVALID_TRANSITION, f"Unknown {self.entity} event {event!r}", {"event": event})
        is_owner = rule.owner_allowed and owner_id is not None and actor.id == owner_id
        if rule.roles and actor.role not in rule.roles and not is_owner:
            raise DomainError(
                ErrorKind.FORBIDDEN_ROLE,
                f"Role {actor.role} cannot {event} a {self.entity}",
                {"event": event, "role": actor.role, "allowed": sorted(rule.roles)},
            )
        current = getattr(record, rule.field)
        if current not in rule.sources:
            raise DomainError(
                ErrorKind.INVALID_TRANSITION,
                f"Cannot {event} a {self.entity} whose {rule.field} is {current}",
                {"event": event, rule.field: current, "allowedFrom": sorted(rule.sources)},
            )
        if rule.guard is not None:
            failure = rule.guard(record)
            if failure:
                raise DomainError(ErrorKind.INVALID_TRANSITION, failure, {"event": event, rule.field: current})
        return rule

    def target_for(self, event: str, record: Any) -> str:
        rule = self.transitions[event]
        return rule.target if rule.target is not None else getattr(record, rule.field)
