"""
Domain filter expressions.

Filters are built as a small expression tree and only flattened to the
remote system's prefix notation at the wire boundary::

    And(Predicate("state", "=", "posted"), Not(Predicate("ref", "=", False)))
    -> ["&", ["state", "=", "posted"], "!", ["ref", "=", False]]
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union


OPERATORS = {
    "=", "!=", ">", ">=", "<", "<=",
    "in", "not in", "like", "ilike", "not like", "not ilike",
    "=like", "=ilike", "child_of", "parent_of",
}

AND_MARKER = "&"
OR_MARKER = "|"
NOT_MARKER = "!"


@dataclass(frozen=True)
class Predicate:
    """Leaf comparison ``(field, operator, value)``."""
    field: str
    operator: str
    value: Any

    def __post_init__(self):
        if not self.field:
            raise ValueError("Predicate field must not be empty")
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported domain operator: {self.operator!r}")

    def to_wire(self) -> List[Any]:
        value = list(self.value) if isinstance(self.value, (tuple, set, frozenset)) else self.value
        return [[self.field, self.operator, value]]

    def prefixed(self, prefix: str) -> "Predicate":
        """Same predicate on a related field (``prefix.field``)."""
        return Predicate(f"{prefix}.{self.field}", self.operator, self.value)


@dataclass(frozen=True, init=False)
class And:
    operands: Tuple["Domain", ...]

    def __init__(self, *operands: "Domain"):
        object.__setattr__(self, "operands", tuple(operands))

    def to_wire(self) -> List[Any]:
        return _nary(AND_MARKER, self.operands)

    def prefixed(self, prefix: str) -> "And":
        return And(*(operand.prefixed(prefix) for operand in self.operands))


@dataclass(frozen=True, init=False)
class Or:
    operands: Tuple["Domain", ...]

    def __init__(self, *operands: "Domain"):
        object.__setattr__(self, "operands", tuple(operands))

    def to_wire(self) -> List[Any]:
        return _nary(OR_MARKER, self.operands)

    def prefixed(self, prefix: str) -> "Or":
        return Or(*(operand.prefixed(prefix) for operand in self.operands))


@dataclass(frozen=True)
class Not:
    operand: "Domain"

    def to_wire(self) -> List[Any]:
        return [NOT_MARKER] + self.operand.to_wire()

    def prefixed(self, prefix: str) -> "Not":
        return Not(self.operand.prefixed(prefix))


Domain = Union[Predicate, And, Or, Not]


def _nary(marker: str, operands: Sequence["Domain"]) -> List[Any]:
    if not operands:
        return []
    flattened: List[Any] = [marker] * (len(operands) - 1)
    for operand in operands:
        flattened.extend(operand.to_wire())
    return flattened


def to_wire(domain: Optional[Domain]) -> List[Any]:
    """Flatten a domain tree to prefix notation; None means "match all"."""
    if domain is None:
        return []
    return domain.to_wire()


def all_of(*operands: Optional[Domain]) -> Optional[Domain]:
    """AND the given operands, skipping None; a single operand is returned as is."""
    present = [operand for operand in operands if operand is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return And(*present)


def date_range(field: str, date_from: Optional[str], date_to: Optional[str]) -> Optional[Domain]:
    """Inclusive date bounds on a field; missing bounds are open."""
    return all_of(
        Predicate(field, ">=", date_from) if date_from else None,
        Predicate(field, "<=", date_to) if date_to else None,
    )


def from_wire(items: Sequence[Any]) -> Optional[Domain]:
    """
    Rebuild an expression tree from prefix notation.

    Top-level operands without an explicit connective are implicitly
    AND-ed, as the remote system does.
    """
    position = 0
    parsed: List[Domain] = []

    def parse() -> Domain:
        nonlocal position
        if position >= len(items):
            raise ValueError("Domain ended while an operand was expected")
        item = items[position]
        position += 1
        if item == AND_MARKER:
            return And(parse(), parse())
        if item == OR_MARKER:
            return Or(parse(), parse())
        if item == NOT_MARKER:
            return Not(parse())
        if isinstance(item, (list, tuple)) and len(item) == 3:
            return Predicate(item[0], item[1], item[2])
        raise ValueError(f"Invalid domain element: {item!r}")

    while position < len(items):
        parsed.append(parse())

    return all_of(*parsed)
