"""
Null-Check Engine - forward dataflow over an operation's control flow graph

Computes, for every reachable block, the GuardState holding on entry to
the block, then replays each block's flow events against that state to
find dereferences of parameters not known to be non-null.

Uses of a local are resolved through the copy facts of the state: a local
holding one parameter on every path stands for that parameter; a local that
may hold several is checked against each of them without guarding any.

Fixpoint iteration runs in reverse postorder and normally converges in
two or three rounds. If it has not converged after ``max_iterations``
rounds, loop back edges are treated as contributing Unknown for every
parameter and one final forward pass is made.
"""

from __future__ import annotations

from typing import Callable, Dict, Hashable, List, Optional, Tuple
import logging

from ..program import BranchKind, ControlFlowGraph, Expression, ExpressionKind, Operation, Parameter
from .dereference import (
    CallResolver, DereferenceScanner, DereferenceSite, ExpressionWalker, FlowEvent, FlowEventKind,
    LocalRef, narrowing, site_location,
)
from .guard_lattice import NO_COPY, GuardFact, GuardState
from .validators import ValidatorRegistry

logger = logging.getLogger(__name__)


DEFAULT_MAX_ITERATIONS = 16

BlockEvents = List[Tuple[int, List[FlowEvent]]]
UnguardedCallback = Callable[[FlowEvent, str, int, int], None]


class NullCheckEngine:
    """
    Per-operation guard analysis.

    Holds only read-only collaborators, so one engine can serve many
    operations concurrently.
    """

    def __init__(self, registry: Optional[ValidatorRegistry] = None,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS,
                 resolver: Optional[CallResolver] = None):
        self.registry = registry or ValidatorRegistry()
        self.max_iterations = max(1, max_iterations)
        self.scanner = DereferenceScanner(self.registry, resolver)

    # ============================================================
    # TRANSFER
    # ============================================================

    @staticmethod
    def _targets(event: FlowEvent, state: GuardState) -> Tuple[List[str], bool]:
        """Parameters an event applies to, and whether it applies to exactly that one"""
        if event.local is None:
            return [event.parameter], True
        values = state.copies_of(event.local)
        parameters = sorted(value for value in values if value is not None)
        return parameters, state.copied_parameter(event.local) is not None

    @staticmethod
    def _copy(event: FlowEvent, state: GuardState) -> GuardState:
        values = set()
        for source in event.sources:
            if isinstance(source, LocalRef):
                values |= state.copies_of(source.name) or NO_COPY
            else:
                values.add(source)
        if event.conditional:
            # The store may not happen, so the old value survives too
            values |= state.copies_of(event.local) or NO_COPY
        return state.with_copy(event.local, frozenset(values))

    def _apply(self, events: List[FlowEvent], state: GuardState, block_id: int, index: int,
               on_unguarded: Optional[UnguardedCallback] = None) -> GuardState:
        for event in events:
            if event.kind == FlowEventKind.LOCAL_COPY:
                state = self._copy(event, state)
                continue

            parameters, exact = self._targets(event, state)
            if event.kind == FlowEventKind.DEREFERENCE and on_unguarded is not None:
                for parameter in parameters:
                    if not state.get(parameter).is_guarded:
                        on_unguarded(event, parameter, block_id, index)
            if exact and not event.conditional:
                # Past a dereference, validator, assertion or reassignment the
                # value can no longer be a null argument
                state = state.set(parameters[0], GuardFact.KNOWN_NON_NULL)
        return state

    def _transfer_block(self, block_id: int, events: BlockEvents, state: GuardState,
                        on_unguarded: Optional[UnguardedCallback] = None) -> GuardState:
        for index, block_events in events:
            state = self._apply(block_events, state, block_id, index, on_unguarded)
        return state

    @staticmethod
    def _subject_in(state: GuardState) -> Callable[[Expression], Optional[Hashable]]:
        """Key branch facts by parameter, seeing through locals that hold one"""
        def subject(expression: Expression) -> Optional[Hashable]:
            parameter = expression.referenced_parameter()
            if parameter is not None:
                return parameter
            expr = expression.strip_conversions()
            if expr.kind == ExpressionKind.LOCAL_REF and expr.name:
                return state.copied_parameter(expr.name)
            return None
        return subject

    def _edge_states(self, cfg: ControlFlowGraph, block_id: int, out_state: GuardState,
                     tracked: List[str]) -> Dict[int, GuardState]:
        """State carried along each outgoing edge of a block"""
        block = cfg.block(block_id)
        successors = cfg.successors(block_id)
        edges: Dict[int, GuardState] = {}

        if block.branch == BranchKind.UNRESOLVED:
            unknown = out_state.update({name: GuardFact.UNKNOWN for name in tracked})
            return {succ: unknown for succ in successors}

        if block.branch == BranchKind.CONDITIONAL:
            facts = narrowing(block.condition, self._subject_in(out_state))
            for succ, branch_facts in ((block.when_true, facts.when_true),
                                       (block.when_false, facts.when_false)):
                if succ not in successors:
                    continue
                narrowed = out_state.update({
                    name: fact for name, fact in branch_facts.items() if name in tracked
                })
                edges[succ] = edges[succ].join(narrowed) if succ in edges else narrowed
            return edges

        for succ in successors:
            edges[succ] = out_state
        return edges

    # ============================================================
    # FIXPOINT
    # ============================================================

    def _block_events(self, operation: Operation, walker: ExpressionWalker) -> Dict[int, BlockEvents]:
        result: Dict[int, BlockEvents] = {}
        for block_id in operation.cfg.reverse_postorder():
            result[block_id] = [
                (index, walker.walk(expression))
                for index, expression in self.scanner.block_expressions(operation, block_id)
            ]
        return result

    def _in_states(self, operation: Operation, tracked: List[str],
                   events: Dict[int, BlockEvents]) -> Dict[int, GuardState]:
        cfg = operation.cfg
        order = cfg.reverse_postorder()
        preds = cfg.predecessors()
        entry_state = GuardState.entry(tracked)

        in_states: Dict[int, GuardState] = {block_id: GuardState.bottom() for block_id in order}
        out_edges: Dict[Tuple[int, int], GuardState] = {}

        def compute(block_id: int, incoming: Callable[[int], GuardState]) -> GuardState:
            state = entry_state if block_id == cfg.entry else GuardState.bottom()
            for pred in preds.get(block_id, []):
                if pred in in_states:
                    state = state.join(incoming(pred))
            return state

        def propagate(block_id: int):
            out_state = self._transfer_block(block_id, events[block_id], in_states[block_id])
            for succ, edge_state in self._edge_states(cfg, block_id, out_state, tracked).items():
                out_edges[(block_id, succ)] = edge_state

        for iteration in range(1, self.max_iterations + 1):
            changed = False
            for block_id in order:
                state = compute(block_id, lambda pred: out_edges.get((pred, block_id), GuardState.bottom()))
                if state != in_states[block_id]:
                    in_states[block_id] = state
                    changed = True
                propagate(block_id)
            if not changed:
                logger.debug(f"{operation.documentation_id}: converged after {iteration} iteration(s)")
                return in_states

        logger.debug(f"{operation.documentation_id}: no fixpoint after {self.max_iterations} "
                     f"iterations, treating back edges as unknown")
        back_edges = cfg.back_edges()
        unknown = GuardState.entry(tracked)
        for block_id in order:
            in_states[block_id] = compute(
                block_id,
                lambda pred: unknown if (pred, block_id) in back_edges
                else out_edges.get((pred, block_id), GuardState.bottom())
            )
            propagate(block_id)
        return in_states

    # ============================================================
    # ANALYSIS
    # ============================================================

    def analyze(self, operation: Operation, candidates: List[Parameter]) -> List[DereferenceSite]:
        """
        Find the first unguarded dereference of each candidate parameter.

        Returns:
            One DereferenceSite per unguarded parameter, in parameter order
        """
        if operation.cfg is None or not candidates:
            return []
        if operation.cfg.entry not in operation.cfg.blocks:
            logger.debug(f"{operation.documentation_id}: entry block missing, nothing to analyze")
            return []

        by_name = {p.name: p for p in candidates}
        tracked = list(by_name)
        events = self._block_events(operation, self.scanner.walker(tracked))
        in_states = self._in_states(operation, tracked, events)

        found: Dict[str, DereferenceSite] = {}

        def record(event: FlowEvent, parameter: str, block_id: int, index: int):
            if parameter in found:
                return
            expression: Expression = event.expression
            found[parameter] = DereferenceSite(
                operation=operation,
                parameter=by_name[parameter],
                block_id=block_id,
                index=index,
                expression=expression,
                location=site_location(operation, expression),
            )

        for block_id in operation.cfg.reverse_postorder():
            state = in_states[block_id]
            if not state.is_reachable:
                continue
            self._transfer_block(block_id, events[block_id], state, record)

        return sorted(found.values(), key=lambda site: site.parameter.ordinal)
