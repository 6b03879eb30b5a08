"""
ntlmsmtp State Machine

Table-driven state machine for one authentication attempt.

The table maps (state, event type) to (next state, context updater).
Updaters are pure: they return a new context and never touch the
network. Registered invariants see the candidate (state, context) pair
and a violation aborts the step before anything is committed.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import attrs
import structlog
from returns.result import Failure, Result, Success

from ntlmsmtp.core.exceptions import InvariantViolation


ContextUpdater = Callable[[Any, Any], Any]
TransitionTable = Mapping[Tuple[Enum, type], Tuple[Enum, ContextUpdater]]
Invariant = Callable[[Enum, Any], bool]


@attrs.define(frozen=True, slots=True)
class Transition:
    """One committed step, with the context it produced."""

    from_state: Enum
    event: str
    to_state: Enum
    at: datetime
    context: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event_type": self.event,
            "to_state": self.to_state.name,
            "timestamp": self.at.isoformat(),
            "context": self.context,
        }


def _json_safe(inst: Any, field: attrs.Attribute, value: Any) -> Any:  # noqa: ARG001
    # Byte fields are reduced to their length; the trace never carries secrets
    if isinstance(value, bytes):
        return f"<bytes:{len(value)}>"
    if isinstance(value, Enum):
        return value.name
    return value


@attrs.define
class StateMachine:
    """
    State machine over a fixed transition table.

    Example:
        machine = StateMachine(
            table={(State.IDLE, Started): (State.RUNNING, on_started)},
            state=State.IDLE,
            context=Context(),
        )
        machine.process_event(Started())
    """

    table: TransitionTable
    state: Enum
    context: Any

    _initial: Optional[Enum] = attrs.field(default=None, init=False)
    _history: List[Transition] = attrs.field(factory=list, init=False)
    _invariants: List[Tuple[str, Invariant]] = attrs.field(factory=list, init=False)
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), init=False)

    def __attrs_post_init__(self) -> None:
        self._initial = self.state

    def add_invariant(self, name: str, invariant: Invariant) -> None:
        self._invariants.append((name, invariant))

    def allows(self, event_type: type) -> bool:
        """Whether the current state accepts events of ``event_type``."""
        return (self.state, event_type) in self.table

    def process_event(self, event: Any) -> Result[Enum, str]:
        """
        Apply ``event`` to the current state.

        Returns:
            Success(new_state), or Failure(reason) when the table has no
            entry for the current state and event, in which case nothing
            changes

        Raises:
            InvariantViolation: If the candidate state breaks an invariant
        """
        event_name = type(event).__name__
        entry = self.table.get((self.state, type(event)))
        if entry is None:
            self._logger.warning(
                "invalid_transition",
                current_state=self.state.name,
                event_type=event_name,
            )
            return Failure(f"{event_name} not allowed in state {self.state.name}")

        next_state, update = entry
        new_context = update(event, self.context)

        for name, invariant in self._invariants:
            if not invariant(next_state, new_context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self.state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated entering {next_state.name}")

        self._history.append(
            Transition(
                from_state=self.state,
                event=event_name,
                to_state=next_state,
                at=datetime.now(timezone.utc),
                context=self._snapshot(new_context),
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self.state.name,
            to_state=next_state.name,
            event_type=event_name,
        )

        self.state = next_state
        self.context = new_context
        return Success(next_state)

    @property
    def history(self) -> List[Transition]:
        return list(self._history)

    def visited_states(self) -> List[str]:
        """Names of every state entered, starting with the initial one."""
        return [self._initial.name] + [t.to_state.name for t in self._history]

    def export_trace_json(self) -> str:
        return json.dumps(
            {
                "initial_state": self._initial.name,
                "final_state": self.state.name,
                "states": self.visited_states(),
                "transitions": [t.to_dict() for t in self._history],
            },
            indent=2,
        )

    @staticmethod
    def _snapshot(context: Any) -> Dict[str, Any]:
        if not attrs.has(type(context)):
            return {}
        return attrs.asdict(context, value_serializer=_json_safe)
