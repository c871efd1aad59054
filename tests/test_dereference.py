"""Tests for guardengine.analysis.dereference"""

import pytest
from guardengine.analysis.dereference import (
    DereferenceScanner, ExpressionWalker, FlowEventKind, LocalRef, narrowing,
)
from guardengine.analysis.guard_lattice import GuardFact
from guardengine.analysis.validators import ValidatorRegistry
from guardengine.config import AnalyzerOptions
from guardengine.program import BasicBlock, BranchKind, MethodRef

from conftest import E


THROW_IF_NULL = MethodRef("ThrowIfNull", "System.ArgumentNullException", ("System.Object", "System.String"))
DEBUG_ASSERT = MethodRef("Assert", "System.Diagnostics.Debug", ("System.Boolean",))
TO_STRING = MethodRef("ToString", "System.Object", is_static=False)

NON_NULL = GuardFact.KNOWN_NON_NULL
NULL = GuardFact.KNOWN_NULL


@pytest.fixture
def walker():
    return ExpressionWalker(["p", "q"], ValidatorRegistry())


def kinds(events):
    return [(e.kind, e.parameter, e.conditional) for e in events]


class TestNarrowing:
    def test_equals_null(self):
        result = narrowing(E.equals_null(E.param("p")))
        assert result.when_true == {"p": NULL}
        assert result.when_false == {"p": NON_NULL}

    def test_null_on_left(self):
        result = narrowing(E.binary(E.null(), "==", E.param("p")))
        assert result.when_false == {"p": NON_NULL}

    def test_not_equals_null(self):
        result = narrowing(E.not_equals_null(E.param("p")))
        assert result.when_true == {"p": NON_NULL}
        assert result.when_false == {"p": NULL}

    def test_through_conversion(self):
        result = narrowing(E.not_equals_null(E.convert(E.param("p"), "System.Object")))
        assert result.when_true == {"p": NON_NULL}

    def test_is_null_patterns(self):
        assert narrowing(E.is_null(E.param("p"))).when_false == {"p": NON_NULL}
        assert narrowing(E.is_null(E.param("p"), negated=True)).when_true == {"p": NON_NULL}

    def test_type_pattern_only_narrows_on_match(self):
        result = narrowing(E.is_type(E.param("p"), "System.String"))
        assert result.when_true == {"p": NON_NULL}
        assert result.when_false == {}

    def test_negation(self):
        result = narrowing(E.not_(E.equals_null(E.param("p"))))
        assert result.when_true == {"p": NON_NULL}

    def test_reference_equals(self):
        result = narrowing(E.call("ReferenceEquals", [E.param("p"), E.null()]))
        assert result.when_false == {"p": NON_NULL}

    @pytest.mark.parametrize("name", ["IsNullOrEmpty", "IsNullOrWhiteSpace"])
    def test_null_or_empty_checks(self, name):
        result = narrowing(E.call(name, [E.param("p")]))
        assert result.when_true == {}
        assert result.when_false == {"p": NON_NULL}

    def test_and(self):
        result = narrowing(E.and_(E.not_equals_null(E.param("p")), E.not_equals_null(E.param("q"))))
        assert result.when_true == {"p": NON_NULL, "q": NON_NULL}
        assert result.when_false == {}

    def test_or(self):
        result = narrowing(E.or_(E.equals_null(E.param("p")), E.equals_null(E.param("q"))))
        assert result.when_true == {}
        assert result.when_false == {"p": NON_NULL, "q": NON_NULL}

    def test_unrelated_conditions(self):
        assert narrowing(None).when_true == {}
        result = narrowing(E.binary(E.local("i"), "<", E.local("n")))
        assert result.when_true == {} and result.when_false == {}
        assert narrowing(E.equals_null(E.local("x"))).when_false == {}


class TestExpressionWalker:
    def test_member_access(self, walker):
        events = walker.walk(E.member(E.param("p"), "Length"))
        assert kinds(events) == [(FlowEventKind.DEREFERENCE, "p", False)]

    def test_instance_call(self, walker):
        events = walker.walk(E.call("ToString", receiver=E.param("p"), target=TO_STRING))
        assert kinds(events) == [(FlowEventKind.DEREFERENCE, "p", False)]

    def test_passing_as_argument_is_not_dereference(self, walker, write_line):
        assert walker.walk(E.call("WriteLine", [E.param("p")], target=write_line)) == []

    def test_element_access_and_delegate_invoke(self, walker):
        assert kinds(walker.walk(E.element(E.param("p"), [E.literal(0)])))[0][0] == FlowEventKind.DEREFERENCE
        assert kinds(walker.walk(E.invoke_delegate(E.param("q"))))[0][1] == "q"

    def test_conversion_is_transparent(self, walker):
        events = walker.walk(E.member(E.convert(E.param("p"), "Samples.IShape"), "Area"))
        assert [e.parameter for e in events] == ["p"]

    def test_repeated_dereference_reported_once(self, walker):
        expr = E.binary(E.member(E.param("p"), "Length"), "+", E.member(E.param("p"), "Length"))
        assert len(walker.walk(expr)) == 1

    def test_untracked_parameters_ignored(self, walker):
        assert walker.walk(E.member(E.param("other"), "Length")) == []

    def test_local_dereference_is_keyed_by_local(self, walker):
        events = walker.walk(E.member(E.local("p"), "Length"))
        assert kinds(events) == [(FlowEventKind.DEREFERENCE, None, False)]
        assert events[0].local == "p"
        assert events[0].subject == LocalRef("p")

    def test_builtin_validator(self, walker):
        events = walker.walk(E.call("ThrowIfNull", [E.param("p")], target=THROW_IF_NULL))
        assert kinds(events) == [(FlowEventKind.VALIDATOR_CALL, "p", False)]

    def test_no_registry_means_no_validators(self):
        walker = ExpressionWalker(["p"])
        assert walker.walk(E.call("ThrowIfNull", [E.param("p")], target=THROW_IF_NULL)) == []

    def test_validated_not_null_on_constructor_arguments(self):
        target = MethodRef(".ctor", "Samples.Holder", ("System.Object",),
                           parameter_attributes=(("ValidatedNotNull",),), is_constructor=True)
        walker = ExpressionWalker(["p"], ValidatorRegistry())
        events = walker.walk(E.new("Samples.Holder", [E.param("p")], target=target))
        assert kinds(events) == [(FlowEventKind.VALIDATOR_CALL, "p", False)]

    def test_extension_receiver_is_first_argument(self):
        target = MethodRef("EnsureNotNull", "Samples.Guards", ("System.Object",), is_extension_method=True)
        registry = ValidatorRegistry(AnalyzerOptions(null_check_validation_methods="EnsureNotNull"))
        walker = ExpressionWalker(["p"], registry)
        events = walker.walk(E.call("EnsureNotNull", receiver=E.param("p"), target=target))
        assert kinds(events) == [(FlowEventKind.VALIDATOR_CALL, "p", False)]

    def test_extension_call_does_not_dereference_receiver(self, walker):
        target = MethodRef("IsEmpty", "Samples.StringExtensions", ("System.String",), is_extension_method=True)
        assert walker.walk(E.call("IsEmpty", receiver=E.param("p"), target=target)) == []

    def test_resolver_overrides_recorded_target(self):
        walker = ExpressionWalker(["p"], ValidatorRegistry(), resolver=lambda expression: THROW_IF_NULL)
        events = walker.walk(E.call("Check", [E.param("p")]))
        assert kinds(events) == [(FlowEventKind.VALIDATOR_CALL, "p", False)]

    def test_and_narrows_right_side(self, walker):
        expr = E.and_(E.not_equals_null(E.param("p")),
                      E.binary(E.member(E.param("p"), "Length"), ">", E.literal(0)))
        assert walker.walk(expr) == []

    def test_or_narrows_right_side(self, walker):
        expr = E.or_(E.equals_null(E.param("p")),
                     E.binary(E.member(E.param("p"), "Length"), "==", E.literal(0)))
        assert walker.walk(expr) == []

    def test_right_side_of_and_is_conditional(self, walker):
        expr = E.and_(E.local("flag"), E.member(E.param("p"), "IsEmpty"))
        assert kinds(walker.walk(expr)) == [(FlowEventKind.DEREFERENCE, "p", True)]

    def test_conditional_operator_arms(self, walker):
        safe = E.conditional(E.equals_null(E.param("p")), E.literal(""), E.member(E.param("p"), "Name"))
        assert walker.walk(safe) == []

        unsafe = E.conditional(E.equals_null(E.param("p")), E.member(E.param("p"), "Name"), E.literal(""))
        assert kinds(walker.walk(unsafe)) == [(FlowEventKind.DEREFERENCE, "p", True)]

    def test_conditional_access(self, walker):
        expr = E.conditional_access(E.param("p"), E.member(E.conditional_receiver(), "Length"))
        assert walker.walk(expr) == []

    def test_conditional_access_tail_dereferences_other_parameter(self, walker):
        expr = E.conditional_access(E.param("p"), E.call("Equals", [E.member(E.param("q"), "Name")],
                                                         receiver=E.conditional_receiver(),
                                                         target=MethodRef("Equals", "System.Object",
                                                                          is_static=False)))
        assert kinds(walker.walk(expr)) == [(FlowEventKind.DEREFERENCE, "q", True)]

    def test_coalesce_throw_asserts(self, walker):
        expr = E.coalesce(E.param("p"), E.throw(E.new("System.ArgumentNullException")))
        assert kinds(walker.walk(expr)) == [(FlowEventKind.ASSERT_NON_NULL, "p", False)]

    def test_coalesce_with_default_asserts_nothing(self, walker):
        assert walker.walk(E.coalesce(E.param("p"), E.literal(""))) == []

    def test_debug_assert(self, walker):
        expr = E.call("Assert", [E.not_equals_null(E.param("p"))], target=DEBUG_ASSERT)
        assert kinds(walker.walk(expr)) == [(FlowEventKind.ASSERT_NON_NULL, "p", False)]

    def test_contract_requires(self, walker):
        requires = MethodRef("Requires", "System.Diagnostics.Contracts.Contract", ("System.Boolean",))
        expr = E.call("Requires", [E.is_null(E.param("q"), negated=True)], target=requires)
        assert [e.parameter for e in walker.walk(expr)] == ["q"]

    def test_lambda_bodies_not_walked(self, walker):
        expr = E.call("Run", [E.lambda_([E.member(E.param("p"), "Length")])],
                      target=MethodRef("Run", "System.Threading.Tasks.Task", ("System.Action",)))
        assert walker.walk(expr) == []

    def test_parameter_reassignment(self, walker):
        expr = E.assign(E.param("p"), E.new("Samples.Widget"))
        assert kinds(walker.walk(expr)) == [(FlowEventKind.ASSIGNMENT, "p", False)]

    def test_store_through_parameter_after_value(self, walker):
        expr = E.assign(E.member(E.param("p"), "Name"), E.member(E.param("q"), "Name"))
        assert [e.parameter for e in walker.walk(expr)] == ["q", "p"]

    def test_throw_operand_is_walked(self, walker):
        expr = E.throw(E.new("System.InvalidOperationException", [E.member(E.param("p"), "Message")]))
        assert [e.parameter for e in walker.walk(expr)] == ["p"]


class TestValueFlow:
    def test_conditional_receiver_dereferences_both_arms(self, walker):
        expr = E.member(E.conditional(E.local("flag"), E.param("p"), E.param("q")), "Length")
        assert kinds(walker.walk(expr)) == [
            (FlowEventKind.DEREFERENCE, "p", True),
            (FlowEventKind.DEREFERENCE, "q", True),
        ]

    def test_conditional_receiver_respects_arm_narrowing(self, walker):
        expr = E.member(E.conditional(E.not_equals_null(E.param("p")), E.param("p"), E.param("q")), "Length")
        assert kinds(walker.walk(expr)) == [(FlowEventKind.DEREFERENCE, "q", True)]

    def test_coalesce_receiver_dereferences_fallback(self, walker):
        expr = E.member(E.coalesce(E.param("p"), E.param("q")), "Length")
        assert kinds(walker.walk(expr)) == [(FlowEventKind.DEREFERENCE, "q", True)]

    def test_coalesce_with_literal_fallback_is_safe(self, walker):
        assert walker.walk(E.member(E.coalesce(E.param("p"), E.literal("")), "Length")) == []

    def test_copy_into_local(self, walker):
        events = walker.walk(E.assign(E.local("s"), E.param("p")))
        assert [(e.kind, e.local, e.sources) for e in events] == [(FlowEventKind.LOCAL_COPY, "s", ("p",))]

    def test_copy_through_conversion(self, walker):
        events = walker.walk(E.assign(E.local("s"), E.convert(E.param("p"), "System.Object")))
        assert events[0].sources == ("p",)

    def test_copy_of_other_value(self, walker):
        events = walker.walk(E.assign(E.local("s"), E.new("System.String")))
        assert [(e.kind, e.sources) for e in events] == [(FlowEventKind.LOCAL_COPY, (None,))]

    def test_copy_of_conditional_value(self, walker):
        events = walker.walk(E.assign(E.local("s"), E.conditional(E.local("flag"), E.param("p"), E.literal(""))))
        assert events[0].sources == ("p", None)

    def test_copy_of_local(self, walker):
        events = walker.walk(E.assign(E.local("t"), E.local("s")))
        assert events[0].sources == (LocalRef("s"),)

    def test_local_narrowed_in_same_expression(self, walker):
        expr = E.and_(E.not_equals_null(E.local("s")), E.binary(E.member(E.local("s"), "Length"), ">", E.literal(0)))
        assert walker.walk(expr) == []

    def test_validator_on_local(self, walker):
        events = walker.walk(E.call("ThrowIfNull", [E.local("s")], target=THROW_IF_NULL))
        assert [(e.kind, e.local) for e in events] == [(FlowEventKind.VALIDATOR_CALL, "s")]

    def test_narrowing_with_custom_subject(self):
        result = narrowing(E.equals_null(E.local("s")), lambda e: "p" if e.name == "s" else None)
        assert result.when_false == {"p": NON_NULL}


class TestDereferenceScanner:
    def test_sites_in_block_order(self, make_operation):
        op = make_operation(parameters=["p"], body=[
            BasicBlock(0, [E.member(E.param("p"), "Length", line=3)],
                       branch=BranchKind.CONDITIONAL, condition=E.equals_null(E.member(E.param("p"), "Name")),
                       when_true=1, when_false=2),
            BasicBlock(1, [E.call("ToString", receiver=E.param("p"), target=TO_STRING, line=7)],
                       branch=BranchKind.RETURN),
            BasicBlock(2, branch=BranchKind.RETURN),
        ])
        sites = list(DereferenceScanner().scan(op, op.parameters))
        assert [(s.block_id, s.index) for s in sites] == [(0, 0), (0, 1), (1, 0)]
        assert sites[0].location.line_number == 3
        assert sites[0].location.snippet == "p.Length"

    def test_unreachable_blocks_skipped(self, make_operation):
        op = make_operation(parameters=["p"], body=[
            BasicBlock(0, branch=BranchKind.RETURN),
            BasicBlock(1, [E.member(E.param("p"), "Length")], branch=BranchKind.RETURN),
        ])
        assert list(DereferenceScanner().scan(op, op.parameters)) == []

    def test_location_falls_back_to_operation(self, make_operation):
        op = make_operation(parameters=["p"], body=[E.member(E.param("p"), "Length")], line_number=42)
        site = next(DereferenceScanner().scan(op, op.parameters))
        assert site.location.file_path == "Widget.cs"
        assert site.location.line_number == 42

    def test_nothing_to_scan(self, make_operation):
        op = make_operation(parameters=["p"], body=[E.member(E.param("p"), "Length")])
        assert list(DereferenceScanner().scan(op, [])) == []
        op.cfg = None
        assert list(DereferenceScanner().scan(op, op.parameters)) == []

    def test_scan_restarts(self, make_operation):
        op = make_operation(parameters=["p"], body=[E.member(E.param("p"), "Length")])
        scanner = DereferenceScanner()
        assert len(list(scanner.scan(op, op.parameters))) == 1
        assert len(list(scanner.scan(op, op.parameters))) == 1

    def test_local_copies_left_to_dataflow(self, make_operation):
        op = make_operation(parameters=["p"], body=[
            E.assign(E.local("s"), E.param("p")), E.member(E.local("s"), "Length"),
        ])
        assert list(DereferenceScanner().scan(op, op.parameters)) == []

    def test_walker_shares_collaborators(self):
        registry = ValidatorRegistry()
        walker = DereferenceScanner(registry).walker(["p"])
        assert walker.registry is registry
        assert walker.tracked == {"p"}
