"""Clamp & Consistency Validator.

A validation pass runs in a fixed order:

1. clamp primary fields to their [min, max], in declaration order
2. re-derive dependent fields from the clamped values
3. repair soft/hard pairs by raising hard to soft (logged as a correction)
4. re-derive again if a repair touched anything
5. check invariants that cannot be repaired and raise ValidationError

Every change made along the way is recorded on the returned
ParameterSet's ``corrections``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from server_optimizer.errors import ValidationError
from server_optimizer.model.server import ParameterSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldBound:
    """Inclusive [minimum, maximum] for one numeric field. None = open."""

    name: str
    minimum: int | None = None
    maximum: int | None = None


@dataclass(frozen=True)
class Derivation:
    """A field computed from other fields.

    With ``depends_on`` empty the field is recomputed on every pass;
    otherwise only when one of the listed fields changed during the pass.
    """

    name: str
    compute: Callable[[Mapping[str, Any]], Any]
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True)
class SoftHardPair:
    """``hard`` must be >= ``soft``."""

    soft: str
    hard: str


@dataclass(frozen=True)
class Invariant:
    """A condition that clamping cannot fix."""

    description: str
    check: Callable[[Mapping[str, Any]], bool]


@dataclass(frozen=True)
class Bounds:
    """Everything the validator needs to know about one subsystem."""

    fields: tuple[FieldBound, ...] = ()
    derived: tuple[Derivation, ...] = ()
    pairs: tuple[SoftHardPair, ...] = ()
    invariants: tuple[Invariant, ...] = ()


def _clamp(values: dict[str, Any], bound: FieldBound, changed: set[str], notes: list[str]) -> None:
    if bound.name not in values:
        return
    if bound.minimum is not None and bound.maximum is not None and bound.minimum > bound.maximum:
        raise ValidationError(f"{bound.name}: empty range [{bound.minimum}, {bound.maximum}]")
    value = values[bound.name]
    clamped = value
    if bound.minimum is not None and clamped < bound.minimum:
        clamped = bound.minimum
    if bound.maximum is not None and clamped > bound.maximum:
        clamped = bound.maximum
    if clamped != value:
        notes.append(f"{bound.name} clamped from {value} to {clamped}")
        values[bound.name] = clamped
        changed.add(bound.name)


def _derive(
    values: dict[str, Any],
    derivations: tuple[Derivation, ...],
    changed: set[str],
    notes: list[str],
) -> None:
    for derivation in derivations:
        if derivation.depends_on and not changed.intersection(derivation.depends_on):
            continue
        new = derivation.compute(values)
        old = values.get(derivation.name)
        if old is not None and old != new:
            notes.append(f"{derivation.name} re-derived from {old} to {new}")
            changed.add(derivation.name)
        values[derivation.name] = new


def validate(params: ParameterSet, bounds: Bounds) -> ParameterSet:
    """Clamp, cascade and check a ParameterSet.

    Raises:
        ValidationError: A field has an empty range or an invariant does
            not hold after all repairs.
    """
    values = params.as_dict()
    changed: set[str] = set()
    notes: list[str] = []

    for bound in bounds.fields:
        _clamp(values, bound, changed, notes)

    _derive(values, bounds.derived, changed, notes)

    repaired = False
    for pair in bounds.pairs:
        if pair.soft not in values or pair.hard not in values:
            continue
        if values[pair.hard] < values[pair.soft]:
            notes.append(f"{pair.hard} raised from {values[pair.hard]} to match {pair.soft} ({values[pair.soft]})")
            values[pair.hard] = values[pair.soft]
            changed.add(pair.hard)
            repaired = True

    if repaired:
        _derive(values, bounds.derived, changed, notes)

    for invariant in bounds.invariants:
        if not invariant.check(values):
            raise ValidationError(f"{params.subsystem}: {invariant.description}")

    for note in notes:
        logger.info("%s: %s", params.subsystem, note)

    return ParameterSet(
        subsystem=params.subsystem,
        server_class=params.server_class,
        values=values,
        corrections=params.corrections + tuple(notes),
    )
