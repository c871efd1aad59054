"""
Guard Lattice - null-state facts for parameter validation analysis

Each tracked parameter carries one GuardFact per program point. Merging
disagreeing facts yields UNKNOWN, so a parameter validated on only one of
several incoming paths is not considered validated after the merge.

Alongside the facts a state records which parameters each local may hold
a copy of, so that ``var s = p; s.Length`` is seen as a use of ``p``.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


class GuardFact(Enum):
    """
    Null state of one parameter.

    Lattice (information order, join moves down):

        KNOWN_NON_NULL   KNOWN_NULL
                 \\         /
                  UNKNOWN

    BOTTOM marks "no path has reached this point yet" and is the identity
    of join; it only exists while the fixpoint is being computed.
    """
    BOTTOM = "bottom"
    UNKNOWN = "unknown"
    KNOWN_NON_NULL = "known_non_null"
    KNOWN_NULL = "known_null"

    @property
    def is_guarded(self) -> bool:
        return self == GuardFact.KNOWN_NON_NULL


class GuardLattice:
    """Lattice operations over GuardFact"""

    @staticmethod
    def join(a: GuardFact, b: GuardFact) -> GuardFact:
        """Combine facts from two incoming edges at a merge point"""
        if a == GuardFact.BOTTOM:
            return b
        if b == GuardFact.BOTTOM:
            return a
        if a == b:
            return a
        return GuardFact.UNKNOWN


# Copy fact of a local: the parameters it may hold, None standing for any
# other value. A local with no entry holds no parameter.
CopyFact = FrozenSet[Optional[str]]

NO_COPY: CopyFact = frozenset({None})


class GuardState:
    """
    Immutable mapping of tracked parameter name to GuardFact, plus the copy
    facts of locals.

    An unreachable state (``GuardState.bottom``) maps every parameter to
    BOTTOM and is the identity of join.
    """

    __slots__ = ('_facts', '_copies', '_reachable')

    def __init__(self, facts: Optional[Mapping[str, GuardFact]] = None, reachable: bool = True,
                 copies: Optional[Mapping[str, CopyFact]] = None):
        self._facts: Tuple[Tuple[str, GuardFact], ...] = tuple(sorted((facts or {}).items()))
        self._copies: Tuple[Tuple[str, CopyFact], ...] = tuple(sorted(
            (local, values) for local, values in (copies or {}).items()
            if any(value is not None for value in values)
        ))
        self._reachable = reachable

    @classmethod
    def entry(cls, parameters: Iterable[str]) -> 'GuardState':
        """State at operation entry: nothing is known about any argument"""
        return cls({name: GuardFact.UNKNOWN for name in parameters})

    @classmethod
    def bottom(cls) -> 'GuardState':
        return cls({}, reachable=False)

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def parameters(self) -> FrozenSet[str]:
        return frozenset(name for name, _ in self._facts)

    def get(self, name: str) -> GuardFact:
        if not self._reachable:
            return GuardFact.BOTTOM
        for key, fact in self._facts:
            if key == name:
                return fact
        return GuardFact.UNKNOWN

    def as_dict(self) -> Dict[str, GuardFact]:
        return dict(self._facts)

    def copies(self) -> Dict[str, CopyFact]:
        return dict(self._copies)

    def copies_of(self, local: str) -> CopyFact:
        """Parameters a local may hold; empty when it holds none"""
        for key, values in self._copies:
            if key == local:
                return values
        return frozenset()

    def copied_parameter(self, local: str) -> Optional[str]:
        """The parameter a local holds on every path, if there is one"""
        values = self.copies_of(local)
        if len(values) == 1 and None not in values:
            return next(iter(values))
        return None

    def set(self, name: str, fact: GuardFact) -> 'GuardState':
        """Return new state with one fact replaced"""
        if not self._reachable:
            return self
        facts = self.as_dict()
        facts[name] = fact
        return GuardState(facts, copies=self.copies())

    def update(self, facts: Mapping[str, GuardFact]) -> 'GuardState':
        if not self._reachable or not facts:
            return self
        merged = self.as_dict()
        merged.update(facts)
        return GuardState(merged, copies=self.copies())

    def with_copy(self, local: str, values: CopyFact) -> 'GuardState':
        """Return new state where local holds one of values"""
        if not self._reachable:
            return self
        copies = self.copies()
        copies[local] = values
        return GuardState(self.as_dict(), copies=copies)

    def join(self, other: 'GuardState') -> 'GuardState':
        """Join two states at a control flow merge"""
        if not self._reachable:
            return other
        if not other._reachable:
            return self
        mine = self.as_dict()
        theirs = other.as_dict()
        merged = {}
        for name in set(mine) | set(theirs):
            merged[name] = GuardLattice.join(
                mine.get(name, GuardFact.UNKNOWN),
                theirs.get(name, GuardFact.UNKNOWN),
            )
        my_copies = self.copies()
        their_copies = other.copies()
        copies = {
            local: my_copies.get(local, NO_COPY) | their_copies.get(local, NO_COPY)
            for local in set(my_copies) | set(their_copies)
        }
        return GuardState(merged, copies=copies)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GuardState):
            return False
        return (self._reachable == other._reachable and self._facts == other._facts
                and self._copies == other._copies)

    def __hash__(self):
        return hash((self._reachable, self._facts, self._copies))

    def __repr__(self):
        if not self._reachable:
            return "GuardState(unreachable)"
        entries = [f"{name}={fact.value}" for name, fact in self._facts]
        entries.extend(f"{local}<-{'|'.join(sorted(v or '?' for v in values))}"
                       for local, values in self._copies)
        return f"GuardState({', '.join(entries)})"
