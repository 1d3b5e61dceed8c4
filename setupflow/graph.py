"""Step dependency graph.

A :class:`StepGraph` is built once with :meth:`StepGraph.load` and is
read-only afterwards. Loading validates that ids are unique, every
dependency resolves, the dependency relation is acyclic and that the
declared ``order`` values form a contiguous ``1..N`` topological order
that agrees with the tie-break the graph uses when it assigns orders
itself: shallower ready steps first, then required before optional.
When no step declares an ``order`` the graph assigns one.
"""

from __future__ import annotations

import heapq
import logging
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from pydantic import ValidationError as PydanticValidationError

from .contracts import Step
from .errors import ValidationError, ValidationKind

logger = logging.getLogger(__name__)

StepInput = Union[Step, Mapping[str, Any]]


def _coerce_step(raw: StepInput) -> Step:
    if isinstance(raw, Step):
        return raw
    try:
        return Step.model_validate(dict(raw))
    except PydanticValidationError as exc:
        step_id = raw.get("id") if isinstance(raw, Mapping) else None
        raise ValidationError(
            ValidationKind.INVALID_STEP,
            f"Invalid step definition: {exc.errors()[0].get('msg', exc)}",
            path=[str(step_id)] if step_id else None,
        ) from exc


class StepGraph:
    """Immutable set of steps and their dependency edges."""

    def __init__(self, steps: Sequence[Step]) -> None:
        ordered = sorted(steps, key=lambda s: s.order or 0)
        self._steps: Dict[str, Step] = {step.id: step for step in ordered}
        self._order: Tuple[str, ...] = tuple(step.id for step in ordered)
        self._dependents: Dict[str, FrozenSet[str]] = {
            step_id: frozenset(
                other.id for other in ordered if step_id in other.depends_on
            )
            for step_id in self._order
        }
        self._depths = _dependency_depths(self._steps)

    # ------------------------------------------------------------------
    # Construction
    @classmethod
    def load(cls, steps: Iterable[StepInput]) -> "StepGraph":
        """Validate ``steps`` and build a graph.

        Raises:
            ValidationError: If the definitions do not form a valid graph.
        """
        parsed = [_coerce_step(raw) for raw in steps]
        if not parsed:
            raise ValidationError(
                ValidationKind.INVALID_STEP, "A step graph needs at least one step"
            )

        seen: set[str] = set()
        for step in parsed:
            if step.id in seen:
                raise ValidationError(
                    ValidationKind.DUPLICATE_ID,
                    f"Step id '{step.id}' is defined more than once",
                    path=[step.id],
                )
            seen.add(step.id)

        for step in parsed:
            for dep in sorted(step.depends_on):
                if dep not in seen:
                    raise ValidationError(
                        ValidationKind.UNKNOWN_DEPENDENCY,
                        f"Step '{step.id}' depends on unknown step '{dep}'",
                        path=[step.id, dep],
                    )

        cycle = _find_cycle(parsed)
        if cycle:
            raise ValidationError(
                ValidationKind.CYCLIC_DEPENDENCY,
                "Step dependencies contain a cycle",
                path=cycle,
            )

        declared = [step.order for step in parsed if step.order is not None]
        if not declared:
            parsed = _assign_orders(parsed)
        elif len(declared) != len(parsed):
            missing = [step.id for step in parsed if step.order is None]
            raise ValidationError(
                ValidationKind.INVALID_ORDER,
                "Either every step declares an order or none does",
                path=missing,
            )
        else:
            _check_declared_orders(parsed)

        graph = cls(parsed)
        logger.debug(f"Loaded step graph: {' -> '.join(graph.topological_order())}")
        return graph

    # ------------------------------------------------------------------
    # Queries
    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[Step]:
        return (self._steps[step_id] for step_id in self._order)

    def __len__(self) -> int:
        return len(self._order)

    @property
    def steps(self) -> List[Step]:
        return list(self)

    def get(self, step_id: str) -> Step:
        try:
            return self._steps[step_id]
        except KeyError:
            raise KeyError(f"Unknown step '{step_id}'") from None

    def topological_order(self) -> Tuple[str, ...]:
        """Step ids sorted by ``order``; respects every dependency edge."""
        return self._order

    def dependencies_of(self, step_id: str) -> FrozenSet[str]:
        return self.get(step_id).depends_on

    def dependents_of(self, step_id: str) -> FrozenSet[str]:
        """Steps that list ``step_id`` as a direct dependency."""
        self.get(step_id)
        return self._dependents[step_id]

    def depth_of(self, step_id: str) -> int:
        self.get(step_id)
        return self._depths[step_id]

    def is_eligible(
        self,
        step_id: str,
        completed: Iterable[str],
        skipped: Iterable[str] = (),
    ) -> bool:
        """Return ``True`` if every dependency of ``step_id`` is satisfied.

        A dependency is satisfied when it is in ``completed`` or when it was
        skipped and is itself optional.
        """
        completed_set = set(completed)
        skipped_set = set(skipped)
        for dep in self.dependencies_of(step_id):
            if dep in completed_set:
                continue
            if dep in skipped_set and self._steps[dep].optional:
                continue
            return False
        return True

    def resolve_order(
        self, custom_order: Optional[Sequence[str]] = None, skip_optional: bool = False
    ) -> List[str]:
        """Return the execution order for one session.

        Ids in ``custom_order`` come first in the given sequence, the rest
        follow in topological order. Optional steps are dropped when
        ``skip_optional`` is set.

        Raises:
            ValidationError: If ``custom_order`` names unknown or duplicate
                ids, or places a step before one of its dependencies.
        """
        sequence: List[str] = []
        if custom_order:
            for step_id in custom_order:
                if step_id not in self._steps:
                    raise ValidationError(
                        ValidationKind.INVALID_ORDER,
                        f"Custom order references unknown step '{step_id}'",
                        path=[step_id],
                    )
                if step_id in sequence:
                    raise ValidationError(
                        ValidationKind.INVALID_ORDER,
                        f"Custom order lists '{step_id}' more than once",
                        path=[step_id],
                    )
                sequence.append(step_id)
        sequence.extend(step_id for step_id in self._order if step_id not in sequence)

        position = {step_id: index for index, step_id in enumerate(sequence)}
        for step_id in sequence:
            for dep in self._steps[step_id].depends_on:
                if position[dep] > position[step_id]:
                    raise ValidationError(
                        ValidationKind.INVALID_ORDER,
                        f"Step '{step_id}' is ordered before its dependency '{dep}'",
                        path=[dep, step_id],
                    )

        if skip_optional:
            sequence = [s for s in sequence if not self._steps[s].optional]
        return sequence


def _find_cycle(steps: Sequence[Step]) -> Optional[List[str]]:
    """Return one dependency cycle as a path, or ``None``."""
    deps = {step.id: sorted(step.depends_on) for step in steps}
    visiting: List[str] = []
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done

    def visit(node: str) -> Optional[List[str]]:
        state[node] = 1
        visiting.append(node)
        for dep in deps[node]:
            if state.get(dep) == 1:
                start = visiting.index(dep)
                return visiting[start:] + [dep]
            if dep not in state:
                found = visit(dep)
                if found:
                    return found
        visiting.pop()
        state[node] = 2
        return None

    for step in steps:
        if step.id not in state:
            found = visit(step.id)
            if found:
                return found
    return None


def _dependency_depths(steps: Mapping[str, Step]) -> Dict[str, int]:
    depths: Dict[str, int] = {}

    def depth(step_id: str) -> int:
        if step_id not in depths:
            deps = steps[step_id].depends_on
            depths[step_id] = 1 + max((depth(d) for d in deps), default=-1)
        return depths[step_id]

    for step_id in steps:
        depth(step_id)
    return depths


def _assign_orders(steps: Sequence[Step]) -> List[Step]:
    """Kahn's algorithm; ties go to lower depth, then required, then declaration."""
    by_id = {step.id: step for step in steps}
    depths = _dependency_depths(by_id)
    index = {step.id: i for i, step in enumerate(steps)}
    remaining = {step.id: len(step.depends_on) for step in steps}
    dependents: Dict[str, List[str]] = {step.id: [] for step in steps}
    for step in steps:
        for dep in step.depends_on:
            dependents[dep].append(step.id)

    def key(step_id: str) -> Tuple[int, bool, int, str]:
        return (depths[step_id], by_id[step_id].optional, index[step_id], step_id)

    ready = [key(s) for s, count in remaining.items() if count == 0]
    heapq.heapify(ready)
    ordered: List[Step] = []
    while ready:
        step_id = heapq.heappop(ready)[-1]
        ordered.append(by_id[step_id].model_copy(update={"order": len(ordered) + 1}))
        for child in dependents[step_id]:
            remaining[child] -= 1
            if remaining[child] == 0:
                heapq.heappush(ready, key(child))
    return ordered


def _check_declared_orders(steps: Sequence[Step]) -> None:
    orders = sorted(step.order for step in steps)
    if orders != list(range(1, len(steps) + 1)):
        raise ValidationError(
            ValidationKind.INVALID_ORDER,
            "Step orders must be unique and contiguous starting at 1",
        )
    order_of = {step.id: step.order for step in steps}
    for step in steps:
        for dep in sorted(step.depends_on):
            if order_of[dep] > order_of[step.id]:
                raise ValidationError(
                    ValidationKind.INVALID_ORDER,
                    f"Step '{step.id}' (order {order_of[step.id]}) precedes its "
                    f"dependency '{dep}' (order {order_of[dep]})",
                    path=[dep, step.id],
                )

    # declared order breaks only the ties left after depth and required-first
    declared = sorted(steps, key=lambda s: s.order)
    canonical = _assign_orders(declared)
    for given, expected in zip(declared, canonical):
        if given.id != expected.id:
            raise ValidationError(
                ValidationKind.INVALID_ORDER,
                f"Step '{expected.id}' must come before '{given.id}' (order {given.order}): "
                "ready steps go shallowest first, then required before optional",
                path=[expected.id, given.id],
            )
