"""
Dereference Scanner - finds null-faulting uses of candidate parameters

Expression trees are walked in evaluation order and turned into a flat
stream of FlowEvents (dereference, validator call, assignment, assertion,
local copy) that the dataflow engine replays against its guard state. The
scanner itself exposes the dereference events of an operation as
DereferenceSites.

A parameter's value can also reach a dereference through a local copy
(``var s = p; s.Length``). The walker reports such uses against the local;
which parameter the local holds is only known along a path, so the engine
resolves them against its per-path copy facts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Hashable, Iterable, Iterator, List, Optional, Set, Tuple, Union
import logging

from ..models import Location
from ..program import (
    Expression, ExpressionKind, MethodRef, Operation, Parameter,
)
from .guard_lattice import GuardFact
from .validators import ValidatorRegistry

logger = logging.getLogger(__name__)


CallResolver = Callable[[Expression], Optional[MethodRef]]

# Calls whose first argument is asserted true when execution continues past them
ASSERTION_METHODS = {
    ('System.Diagnostics.Debug', 'Assert'),
    ('System.Diagnostics.Trace', 'Assert'),
    ('System.Diagnostics.Contracts.Contract', 'Assert'),
    ('System.Diagnostics.Contracts.Contract', 'Assume'),
    ('System.Diagnostics.Contracts.Contract', 'Requires'),
}

NULL_OR_EMPTY_CHECKS = {'IsNullOrEmpty', 'IsNullOrWhiteSpace'}


@dataclass(frozen=True)
class LocalRef:
    """A local variable, as the subject of a flow event"""
    name: str


# A tracked parameter (by name) or a local that may hold a copy of one
Subject = Union[str, LocalRef]

# Maps an expression to the key its null facts are recorded under
SubjectResolver = Callable[[Expression], Optional[Hashable]]


class FlowEventKind(Enum):
    DEREFERENCE = "dereference"
    VALIDATOR_CALL = "validator_call"
    ASSIGNMENT = "assignment"
    ASSERT_NON_NULL = "assert_non_null"
    LOCAL_COPY = "local_copy"


@dataclass(frozen=True)
class FlowEvent:
    """
    One guard-relevant effect on a parameter or on a local.

    Exactly one of ``parameter`` and ``local`` is set. A LOCAL_COPY event
    stores into ``local``; ``sources`` lists what the stored value may be,
    None standing for a value that is not a tracked parameter.

    Events from sub-expressions that only run on some evaluations
    (right side of ``&&``/``||``/``??``, arms of ``?:``, the tail of
    ``?.``) are ``conditional``: a conditional dereference is still
    checked but its effect does not outlive the expression.
    """
    kind: FlowEventKind
    parameter: Optional[str]
    expression: Expression = field(compare=False)
    conditional: bool = False
    local: Optional[str] = None
    sources: Tuple[Optional[Subject], ...] = ()

    @classmethod
    def of(cls, kind: FlowEventKind, subject: Subject, expression: Expression,
           conditional: bool = False) -> 'FlowEvent':
        if isinstance(subject, LocalRef):
            return cls(kind, None, expression, conditional, local=subject.name)
        return cls(kind, subject, expression, conditional)

    @property
    def subject(self) -> Subject:
        return LocalRef(self.local) if self.local is not None else self.parameter


@dataclass
class DereferenceSite:
    """A program point where a candidate parameter is read in a null-faulting way"""
    operation: Operation
    parameter: Parameter
    block_id: int
    index: int  # Operation index in the block; len(operations) for the branch condition
    expression: Expression
    location: Location

    def __str__(self):
        return f"{self.parameter.name} at block {self.block_id}[{self.index}]: {self.expression}"


# ============================================================
# BRANCH NARROWING
# ============================================================

@dataclass
class Narrowing:
    """Facts that hold on the true and false outcomes of a condition"""
    when_true: Dict[Hashable, GuardFact] = field(default_factory=dict)
    when_false: Dict[Hashable, GuardFact] = field(default_factory=dict)

    def negate(self) -> 'Narrowing':
        return Narrowing(dict(self.when_false), dict(self.when_true))


def _combine(first: Dict[Hashable, GuardFact], second: Dict[Hashable, GuardFact]) -> Dict[Hashable, GuardFact]:
    """Both hold (sequential evaluation)"""
    combined = dict(first)
    combined.update(second)
    return combined


def _common(a: Dict[Hashable, GuardFact], b: Dict[Hashable, GuardFact]) -> Dict[Hashable, GuardFact]:
    """Either holds: keep only facts both outcomes agree on"""
    return {name: fact for name, fact in a.items() if b.get(name) == fact}


def _parameter_subject(expression: Expression) -> Optional[Hashable]:
    return expression.referenced_parameter()


def _null_comparison(left: Expression, right: Expression, subject: SubjectResolver) -> Optional[Hashable]:
    """Subject compared against null in ``x == null`` or ``null == x`` form"""
    if right.strip_conversions().kind == ExpressionKind.NULL_LITERAL:
        return subject(left)
    if left.strip_conversions().kind == ExpressionKind.NULL_LITERAL:
        return subject(right)
    return None


def _is_null_narrowing(key: Optional[Hashable]) -> Narrowing:
    if key is None:
        return Narrowing()
    return Narrowing({key: GuardFact.KNOWN_NULL}, {key: GuardFact.KNOWN_NON_NULL})


def narrowing(condition: Optional[Expression], subject: Optional[SubjectResolver] = None) -> Narrowing:
    """
    Extract facts implied by a condition being true or false.

    Facts are keyed by ``subject(expression)``; by default only direct
    parameter references produce a key, so facts are keyed by parameter name.
    """
    if condition is None:
        return Narrowing()
    subject = subject or _parameter_subject

    expr = condition.strip_conversions()
    kind = expr.kind

    if kind == ExpressionKind.UNARY_NOT and expr.operand is not None:
        return narrowing(expr.operand, subject).negate()

    if kind == ExpressionKind.BINARY and len(expr.children) == 2:
        left, right = expr.children
        if expr.operator == '&&':
            lhs, rhs = narrowing(left, subject), narrowing(right, subject)
            return Narrowing(
                when_true=_combine(lhs.when_true, rhs.when_true),
                when_false=_common(lhs.when_false, _combine(lhs.when_true, rhs.when_false)),
            )
        if expr.operator == '||':
            lhs, rhs = narrowing(left, subject), narrowing(right, subject)
            return Narrowing(
                when_true=_common(lhs.when_true, _combine(lhs.when_false, rhs.when_true)),
                when_false=_combine(lhs.when_false, rhs.when_false),
            )
        if expr.operator == '==':
            return _is_null_narrowing(_null_comparison(left, right, subject))
        if expr.operator == '!=':
            return _is_null_narrowing(_null_comparison(left, right, subject)).negate()
        return Narrowing()

    if kind == ExpressionKind.IS_NULL and expr.operand is not None:
        result = _is_null_narrowing(subject(expr.operand))
        return result.negate() if expr.negated else result

    if kind == ExpressionKind.IS_TYPE and expr.operand is not None:
        key = subject(expr.operand)
        if key is None:
            return Narrowing()
        # A type pattern only matches non-null values; failing it says nothing
        result = Narrowing(when_true={key: GuardFact.KNOWN_NON_NULL})
        return result.negate() if expr.negated else result

    if kind == ExpressionKind.INVOCATION and expr.receiver is None:
        if expr.name == 'ReferenceEquals' and len(expr.arguments) == 2:
            return _is_null_narrowing(_null_comparison(expr.arguments[0], expr.arguments[1], subject))
        if expr.name in NULL_OR_EMPTY_CHECKS and len(expr.arguments) == 1:
            key = subject(expr.arguments[0])
            if key is not None:
                return Narrowing(when_false={key: GuardFact.KNOWN_NON_NULL})

    return Narrowing()


# ============================================================
# EXPRESSION WALKER
# ============================================================

def _is_assertion(callee: Optional[MethodRef]) -> bool:
    return callee is not None and (callee.containing_type, callee.name) in ASSERTION_METHODS


class ExpressionWalker:
    """
    Turns one expression tree into FlowEvents in evaluation order.

    Only parameters in ``tracked`` and locals produce events. Within one
    expression a subject already dereferenced, validated or narrowed to
    non-null by an enclosing ``&&``, ``||``, ``?:`` or ``?.`` is not
    reported again. Lambda bodies run at some later time and are not walked.
    """

    def __init__(self, tracked: Iterable[str], registry: Optional[ValidatorRegistry] = None,
                 resolver: Optional[CallResolver] = None):
        self.tracked: Set[str] = set(tracked)
        self.registry = registry
        self.resolver = resolver or (lambda expression: expression.target)

    def walk(self, expression: Expression) -> List[FlowEvent]:
        events: List[FlowEvent] = []
        self._visit(expression, events, set(), False)
        return events

    # ----- helpers -----

    def subject(self, expression: Optional[Expression]) -> Optional[Subject]:
        """The tracked parameter or local an expression denotes directly"""
        if expression is None:
            return None
        expr = expression.strip_conversions()
        if expr.kind == ExpressionKind.PARAMETER_REF:
            return expr.parameter if expr.parameter in self.tracked else None
        if expr.kind == ExpressionKind.LOCAL_REF and expr.name:
            return LocalRef(expr.name)
        return None

    def _denoted(self, expression: Optional[Expression], known: Set[Subject]) -> List[Tuple[Subject, bool]]:
        """
        Subjects whose value an expression may evaluate to.

        Each comes with a flag telling whether the value is only that
        subject on some evaluations (an arm of ``?:``, the right side of ``??``).
        """
        if expression is None:
            return []
        key = self.subject(expression)
        if key is not None:
            return [] if key in known else [(key, False)]

        expr = expression.strip_conversions()
        if expr.kind == ExpressionKind.CONDITIONAL and len(expr.children) == 3:
            condition, when_true, when_false = expr.children
            facts = narrowing(condition, self.subject)
            result = []
            for arm, arm_facts in ((when_true, facts.when_true), (when_false, facts.when_false)):
                result.extend((key, True) for key, _ in self._denoted(arm, self._scoped(known, arm_facts)))
            return result
        if expr.kind == ExpressionKind.COALESCE and len(expr.children) == 2:
            # a ?? b is b only when a is null
            return [(key, True) for key, _ in self._denoted(expr.children[1], known)]
        return []

    def _emit(self, events: List[FlowEvent], kind: FlowEventKind, subject: Subject,
              expression: Expression, known: Set[Subject], conditional: bool):
        if kind == FlowEventKind.DEREFERENCE and subject in known:
            return
        events.append(FlowEvent.of(kind, subject, expression, conditional))
        known.add(subject)

    def _dereference(self, receiver: Optional[Expression], node: Expression,
                     events: List[FlowEvent], known: Set[Subject], conditional: bool):
        for key, partial in self._denoted(receiver, known):
            if partial:
                events.append(FlowEvent.of(FlowEventKind.DEREFERENCE, key, node, True))
            else:
                self._emit(events, FlowEventKind.DEREFERENCE, key, node, known, conditional)

    @staticmethod
    def _scoped(known: Set[Subject], facts: Dict[Hashable, GuardFact]) -> Set[Subject]:
        scoped = set(known)
        scoped.update(key for key, fact in facts.items() if fact == GuardFact.KNOWN_NON_NULL)
        return scoped

    def _branch(self, expression: Expression, events: List[FlowEvent], known: Set[Subject],
                facts: Dict[Hashable, GuardFact]):
        """Walk a sub-expression that only runs on some evaluations"""
        self._visit(expression, events, self._scoped(known, facts), True)

    # ----- traversal -----

    def _visit(self, expr: Optional[Expression], events: List[FlowEvent],
               known: Set[Subject], conditional: bool):
        if expr is None:
            return
        kind = expr.kind

        if kind in (ExpressionKind.PARAMETER_REF, ExpressionKind.LOCAL_REF, ExpressionKind.LITERAL,
                    ExpressionKind.NULL_LITERAL, ExpressionKind.CONDITIONAL_RECEIVER,
                    ExpressionKind.LAMBDA):
            return

        if kind == ExpressionKind.MEMBER_ACCESS:
            self._visit(expr.receiver, events, known, conditional)
            self._dereference(expr.receiver, expr, events, known, conditional)
            return

        if kind == ExpressionKind.ELEMENT_ACCESS:
            self._visit(expr.receiver, events, known, conditional)
            for argument in expr.arguments:
                self._visit(argument, events, known, conditional)
            self._dereference(expr.receiver, expr, events, known, conditional)
            return

        if kind == ExpressionKind.INVOCATION:
            self._visit_invocation(expr, events, known, conditional)
            return

        if kind == ExpressionKind.DELEGATE_INVOKE:
            self._visit(expr.receiver, events, known, conditional)
            self._dereference(expr.receiver, expr, events, known, conditional)
            for argument in expr.arguments:
                self._visit(argument, events, known, conditional)
            return

        if kind in (ExpressionKind.CONSTRUCTOR_INITIALIZER, ExpressionKind.OBJECT_CREATION):
            for argument in expr.arguments:
                self._visit(argument, events, known, conditional)
            self._validate_arguments(self.resolver(expr), expr.arguments, expr, events, known, conditional)
            return

        if kind == ExpressionKind.BINARY and expr.operator in ('&&', '||') and len(expr.children) == 2:
            left, right = expr.children
            self._visit(left, events, known, conditional)
            facts = narrowing(left, self.subject)
            self._branch(right, events, known, facts.when_true if expr.operator == '&&' else facts.when_false)
            return

        if kind == ExpressionKind.COALESCE and len(expr.children) == 2:
            left, right = expr.children
            self._visit(left, events, known, conditional)
            self._branch(right, events, known, {})
            key = self.subject(left)
            if key is not None and right.strip_conversions().kind == ExpressionKind.THROW:
                # x ?? throw ...: only a non-null x gets past this point
                self._emit(events, FlowEventKind.ASSERT_NON_NULL, key, expr, known, conditional)
            return

        if kind == ExpressionKind.CONDITIONAL and len(expr.children) == 3:
            condition, when_true, when_false = expr.children
            self._visit(condition, events, known, conditional)
            facts = narrowing(condition, self.subject)
            self._branch(when_true, events, known, facts.when_true)
            self._branch(when_false, events, known, facts.when_false)
            return

        if kind == ExpressionKind.CONDITIONAL_ACCESS:
            self._visit(expr.receiver, events, known, conditional)
            key = self.subject(expr.receiver)
            facts = {key: GuardFact.KNOWN_NON_NULL} if key is not None else {}
            for child in expr.children:
                self._branch(child, events, known, facts)
            return

        if kind == ExpressionKind.ASSIGNMENT and len(expr.children) == 2:
            self._visit_assignment(expr, events, known, conditional)
            return

        # CONVERSION, UNARY_NOT, IS_NULL, IS_TYPE, THROW, BINARY, OTHER
        self._visit(expr.receiver, events, known, conditional)
        for child in expr.children:
            self._visit(child, events, known, conditional)
        for argument in expr.arguments:
            self._visit(argument, events, known, conditional)

    def _visit_invocation(self, expr: Expression, events: List[FlowEvent],
                          known: Set[Subject], conditional: bool):
        callee = self.resolver(expr)
        arguments = list(expr.arguments)

        if expr.receiver is not None and callee is not None and callee.is_extension_method:
            # p.Extension() passes p as the first argument and does not dereference it
            arguments.insert(0, expr.receiver)
        elif expr.receiver is not None:
            self._visit(expr.receiver, events, known, conditional)
            self._dereference(expr.receiver, expr, events, known, conditional)

        for argument in arguments:
            self._visit(argument, events, known, conditional)

        if _is_assertion(callee) and arguments:
            for key, fact in narrowing(arguments[0], self.subject).when_true.items():
                if fact == GuardFact.KNOWN_NON_NULL:
                    self._emit(events, FlowEventKind.ASSERT_NON_NULL, key, expr, known, conditional)
            return

        self._validate_arguments(callee, arguments, expr, events, known, conditional)

    def _validate_arguments(self, callee: Optional[MethodRef], arguments: List[Expression],
                            expr: Expression, events: List[FlowEvent], known: Set[Subject], conditional: bool):
        if self.registry is None or not self.registry.is_validator_call(callee):
            return
        for ordinal in self.registry.validated_ordinals(callee, len(arguments)):
            key = self.subject(arguments[ordinal])
            if key is not None:
                self._emit(events, FlowEventKind.VALIDATOR_CALL, key, expr, known, conditional)

    def _visit_assignment(self, expr: Expression, events: List[FlowEvent],
                          known: Set[Subject], conditional: bool):
        target, value = expr.children

        if target.kind == ExpressionKind.PARAMETER_REF:
            self._visit(value, events, known, conditional)
            if target.parameter in self.tracked:
                self._emit(events, FlowEventKind.ASSIGNMENT, target.parameter, expr, known, conditional)
            return

        if target.kind == ExpressionKind.LOCAL_REF and target.name:
            self._visit(value, events, known, conditional)
            denoted = self._denoted(value, known)
            sources: List[Optional[Subject]] = [key for key, _ in denoted]
            if not denoted or any(partial for _, partial in denoted):
                sources.append(None)
            events.append(FlowEvent(FlowEventKind.LOCAL_COPY, None, expr, conditional,
                                    local=target.name, sources=tuple(sources)))
            known.discard(LocalRef(target.name))
            return

        if target.kind in (ExpressionKind.MEMBER_ACCESS, ExpressionKind.ELEMENT_ACCESS):
            # p.X = v: the store through p faults after v is evaluated
            self._visit(target.receiver, events, known, conditional)
            for argument in target.arguments:
                self._visit(argument, events, known, conditional)
            self._visit(value, events, known, conditional)
            self._dereference(target.receiver, target, events, known, conditional)
            return

        self._visit(target, events, known, conditional)
        self._visit(value, events, known, conditional)


# ============================================================
# SCANNER
# ============================================================

def site_location(operation: Operation, expression: Expression) -> Location:
    if expression.line:
        return expression.location(operation.file_path)
    return Location(file_path=operation.file_path, line_number=max(operation.line_number, 1),
                    snippet=expression.text or None)


class DereferenceScanner:
    """
    Lists the dereference sites of candidate parameters in one operation.

    ``scan`` is a generator over reachable blocks in reverse postorder,
    each block's operations in order with its branch condition last.
    Calling it again restarts the scan. Dereferences through local copies
    depend on the path taken and are left to the dataflow engine.
    """

    def __init__(self, registry: Optional[ValidatorRegistry] = None,
                 resolver: Optional[CallResolver] = None):
        self.registry = registry
        self.resolver = resolver

    def walker(self, tracked: Iterable[str]) -> ExpressionWalker:
        return ExpressionWalker(tracked, self.registry, self.resolver)

    def block_expressions(self, operation: Operation, block_id: int) -> Iterator[Tuple[int, Expression]]:
        """(index, expression) pairs of a block, branch condition last"""
        block = operation.cfg.block(block_id)
        for index, expression in enumerate(block.operations):
            yield index, expression
        if block.condition is not None:
            yield len(block.operations), block.condition

    def scan(self, operation: Operation, candidates: List[Parameter]) -> Iterator[DereferenceSite]:
        if operation.cfg is None or not candidates:
            return
        by_name = {p.name: p for p in candidates}
        walker = self.walker(by_name)

        for block_id in operation.cfg.reverse_postorder():
            for index, expression in self.block_expressions(operation, block_id):
                for event in walker.walk(expression):
                    if event.kind != FlowEventKind.DEREFERENCE or event.parameter is None:
                        continue
                    yield DereferenceSite(
                        operation=operation,
                        parameter=by_name[event.parameter],
                        block_id=block_id,
                        index=index,
                        expression=event.expression,
                        location=site_location(operation, event.expression),
                    )
