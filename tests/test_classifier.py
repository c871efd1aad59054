"""Tests for guardengine.analysis.classifier"""

import pytest
from guardengine.analysis.classifier import (
    SymbolClassifier, is_externally_visible, is_type_externally_visible,
)
from guardengine.config import AnalyzerOptions
from guardengine.program import (
    Accessibility, NullableAnnotation, Parameter, RefKind, TypeSymbol,
)

from conftest import E, build_operation


@pytest.fixture
def classifier():
    return SymbolClassifier(AnalyzerOptions())


class TestVisibility:
    def test_public_member_of_public_type(self, make_operation):
        assert is_externally_visible(make_operation())

    @pytest.mark.parametrize("accessibility", [
        Accessibility.PRIVATE, Accessibility.INTERNAL, Accessibility.PRIVATE_PROTECTED,
    ])
    def test_hidden_members(self, make_operation, accessibility):
        assert not is_externally_visible(make_operation(accessibility=accessibility))

    @pytest.mark.parametrize("accessibility", [
        Accessibility.PROTECTED, Accessibility.PROTECTED_INTERNAL,
    ])
    def test_protected_member_of_unsealed_type(self, make_operation, accessibility):
        assert is_externally_visible(make_operation(accessibility=accessibility))

    def test_protected_member_of_sealed_type(self, make_operation):
        sealed = TypeSymbol("Widget", namespace="Samples", is_sealed=True)
        op = make_operation(accessibility=Accessibility.PROTECTED, type_symbol=sealed)
        assert not is_externally_visible(op)

    def test_internal_type(self, make_operation):
        hidden = TypeSymbol("Hidden", namespace="Samples", accessibility=Accessibility.INTERNAL)
        assert not is_externally_visible(make_operation(type_symbol=hidden))

    def test_public_nested_in_internal(self):
        outer = TypeSymbol("Outer", namespace="Samples", accessibility=Accessibility.INTERNAL)
        inner = TypeSymbol("Inner", containing_type=outer)
        assert not is_type_externally_visible(inner)

    def test_protected_nested_type(self):
        outer = TypeSymbol("Outer", namespace="Samples")
        inner = TypeSymbol("Inner", accessibility=Accessibility.PROTECTED, containing_type=outer)
        assert is_type_externally_visible(inner)

        sealed_outer = TypeSymbol("Outer", namespace="Samples", is_sealed=True)
        hidden = TypeSymbol("Inner", accessibility=Accessibility.PROTECTED, containing_type=sealed_outer)
        assert not is_type_externally_visible(hidden)


class TestScope:
    def test_abstract_operation_out_of_scope(self, classifier, make_operation):
        op = make_operation()
        op.cfg = None
        assert not classifier.is_in_scope(op)
        assert classifier.candidates(op) == []

    def test_disabled_rule(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(enabled=False))
        assert not classifier.is_in_scope(make_operation())

    def test_excluded_by_simple_type_name(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(excluded_symbol_names="Widget"))
        assert classifier.is_excluded(make_operation())

    def test_excluded_by_method_name(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(excluded_symbol_names="Run"))
        assert classifier.is_excluded(make_operation("Run"))
        assert not classifier.is_excluded(make_operation("Other"))

    def test_excluded_by_documentation_id(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(
            excluded_symbol_names="M:Samples.Widget.Run(System.String)"))
        assert classifier.is_excluded(make_operation("Run", ["input"]))
        assert not classifier.is_excluded(make_operation("Run", ["input", "other"]))

    def test_excluded_by_namespace(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(excluded_symbol_names="N:Samples"))
        assert classifier.is_excluded(make_operation())

    def test_excluded_nested_type_through_container(self, make_operation):
        outer = TypeSymbol("Outer", namespace="Samples")
        inner = TypeSymbol("Inner", containing_type=outer)
        classifier = SymbolClassifier(AnalyzerOptions(excluded_symbol_names="T:Samples.Outer"))
        assert classifier.is_excluded(make_operation(type_symbol=inner))

    def test_excluded_with_derived_types(self, make_operation):
        derived = TypeSymbol("Derived", namespace="Samples", base_types=("Samples.Base", "System.Object"))
        classifier = SymbolClassifier(AnalyzerOptions(
            excluded_type_names_with_derived_types="T:Samples.Base"))
        assert classifier.is_excluded(make_operation(type_symbol=derived))
        assert not classifier.is_excluded(make_operation())

    def test_base_type_not_excluded_by_plain_symbol_names(self, make_operation):
        derived = TypeSymbol("Derived", namespace="Samples", base_types=("Samples.Base",))
        classifier = SymbolClassifier(AnalyzerOptions(excluded_symbol_names="T:Samples.Base"))
        assert not classifier.is_excluded(make_operation(type_symbol=derived))

    def test_malformed_entries_are_collected(self):
        classifier = SymbolClassifier(AnalyzerOptions(
            excluded_symbol_names="Widget|X:Bad",
            excluded_type_names_with_derived_types="T:",
        ))
        assert len(classifier.configuration_errors) == 2
        assert len(classifier.excluded_symbols) == 1


class TestCandidates:
    def test_reference_parameters_in_order(self, classifier, make_operation):
        op = make_operation(parameters=[
            Parameter("b", "System.String", ordinal=0),
            Parameter("count", "System.Int32", is_reference_type=False, ordinal=1),
            Parameter("a", "System.Object", ordinal=2),
        ])
        assert [p.name for p in classifier.candidates(op)] == ["b", "a"]

    def test_out_parameter_excluded(self, classifier, make_operation):
        op = make_operation(parameters=[
            Parameter("result", "System.String", ref_kind=RefKind.OUT),
        ])
        assert classifier.candidates(op) == []

    def test_ref_parameter_included(self, classifier, make_operation):
        op = make_operation(parameters=[
            Parameter("value", "System.String", ref_kind=RefKind.REF),
        ])
        assert len(classifier.candidates(op)) == 1

    def test_non_nullable_annotation_excluded(self, classifier, make_operation):
        op = make_operation(parameters=[
            Parameter("a", "System.String", nullable_annotation=NullableAnnotation.NOT_ANNOTATED, ordinal=0),
            Parameter("b", "System.String", nullable_annotation=NullableAnnotation.ANNOTATED, ordinal=1),
        ])
        assert [p.name for p in classifier.candidates(op)] == ["b"]

    def test_extension_receiver_included_by_default(self, classifier, make_operation):
        op = make_operation("IsEmpty", is_extension_method=True, is_static=True)
        assert [p.name for p in classifier.candidates(op)] == ["input"]

    def test_extension_receiver_excluded_by_option(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(exclude_extension_method_this_parameter=True))
        op = make_operation("IsEmpty", ["value", "other"], is_extension_method=True, is_static=True)
        assert [p.name for p in classifier.candidates(op)] == ["other"]

    def test_receiver_marked_by_this_flag(self, make_operation):
        classifier = SymbolClassifier(AnalyzerOptions(exclude_extension_method_this_parameter=True))
        op = make_operation(parameters=[Parameter("value", "System.String", is_this=True)])
        assert classifier.candidates(op) == []

    def test_hidden_operation_has_no_candidates(self, classifier, make_operation):
        op = make_operation(accessibility=Accessibility.INTERNAL, body=[E.member(E.param("input"), "Length")])
        assert classifier.candidates(op) == []
