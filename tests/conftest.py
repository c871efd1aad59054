"""Shared test fixtures for the nullguard test suite."""

import sys
import pytest
from pathlib import Path
from typing import List, Optional, Sequence, Union

# Ensure guardengine is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from guardengine.models import AnalysisResult, Diagnostic, Location, Severity
from guardengine.program import (
    BasicBlock, BranchKind, Compilation, ControlFlowGraph,
    Expression, MethodRef, Operation, Parameter, TypeSymbol,
)

FIXTURES_DIR = Path(__file__).parent / "fixtures"

E = Expression


def _parameters(specs: Sequence[Union[str, Parameter]]) -> List[Parameter]:
    parameters = []
    for ordinal, spec in enumerate(specs):
        if isinstance(spec, Parameter):
            parameters.append(spec)
        else:
            parameters.append(Parameter(spec, "System.String", ordinal=ordinal))
    return parameters


def build_operation(name: str = "Run",
                    parameters: Sequence[Union[str, Parameter]] = ("input",),
                    body: Union[None, List[Expression], List[BasicBlock]] = None,
                    type_symbol: Optional[TypeSymbol] = None,
                    entry: int = 0,
                    **kwargs) -> Operation:
    """
    Build an operation. ``body`` is either a list of expressions (one
    returning block) or a list of BasicBlocks.
    """
    if body is None:
        body = []
    if body and isinstance(body[0], BasicBlock):
        cfg = ControlFlowGraph(entry=entry, blocks={b.id: b for b in body})
    else:
        cfg = ControlFlowGraph(entry=0, blocks={0: BasicBlock(0, list(body), BranchKind.RETURN)})
    return Operation(
        name=name,
        containing_type=type_symbol or TypeSymbol("Widget", namespace="Samples"),
        parameters=_parameters(parameters),
        cfg=cfg,
        file_path=kwargs.pop('file_path', "Widget.cs"),
        **kwargs,
    )


def if_null_throw(block_id: int, parameter: str, next_block: int, throw_block: int) -> List[BasicBlock]:
    """``if (p == null) throw new ArgumentNullException(nameof(p));``"""
    return [
        BasicBlock(block_id, branch=BranchKind.CONDITIONAL, condition=E.equals_null(E.param(parameter)),
                   when_true=throw_block, when_false=next_block),
        BasicBlock(throw_block, [E.throw(E.new("System.ArgumentNullException", [E.literal(parameter)]))],
                   branch=BranchKind.THROW),
    ]


@pytest.fixture
def fixtures_dir():
    """Path to test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def make_operation():
    """Factory for operations under test."""
    return build_operation


@pytest.fixture
def null_guard():
    """Factory for an if-null-throw block pair."""
    return if_null_throw


@pytest.fixture
def public_type():
    return TypeSymbol("Widget", namespace="Samples")


@pytest.fixture
def write_line():
    """Static call target that just receives its argument."""
    return MethodRef("WriteLine", "System.Console", ("System.String",))


@pytest.fixture
def make_compilation():
    def _make(*operations: Operation, name: str = "Samples") -> Compilation:
        types = []
        for op in operations:
            if op.containing_type not in types:
                types.append(op.containing_type)
        return Compilation(name=name, types=types, operations=list(operations))
    return _make


@pytest.fixture
def sample_location():
    """A sample dereference location."""
    return Location(
        file_path="src/Samples/Test.cs",
        line_number=10,
        column=13,
        snippet="input.Length",
    )


@pytest.fixture
def sample_diagnostic(sample_location):
    """A fully populated sample diagnostic."""
    return Diagnostic(
        operation_id="M:Samples.Test.DoNotValidate(System.String)",
        operation_name="Test.DoNotValidate(System.String input)",
        parameter="input",
        parameter_ordinal=0,
        location=sample_location,
        message="In externally visible method 'Samples.Test.DoNotValidate(System.String input)', "
                "validate parameter 'input' is non-null before using it.",
        severity=Severity.WARNING,
        fix_hint="ArgumentNullException.ThrowIfNull(input);",
    )


@pytest.fixture
def sample_suppressed_diagnostic():
    return Diagnostic(
        operation_id="M:Samples.Legacy.Load(System.String)",
        operation_name="Legacy.Load(System.String path)",
        parameter="path",
        parameter_ordinal=0,
        location=Location(file_path="src/Samples/Legacy.cs", line_number=5),
        message="In externally visible method 'Samples.Legacy.Load(System.String path)', "
                "validate parameter 'path' is non-null before using it.",
        suppressed=True,
    )


@pytest.fixture
def sample_result(sample_diagnostic, sample_suppressed_diagnostic):
    """An analysis result with one active and one suppressed diagnostic."""
    return AnalysisResult(
        unit_name="Samples",
        diagnostics=[sample_diagnostic, sample_suppressed_diagnostic],
        operations_analyzed=4,
        operations_skipped=2,
        duration_seconds=0.05,
        warnings=["[null_check_validation_methods] malformed symbol name 'M:'"],
    )


@pytest.fixture
def empty_result():
    return AnalysisResult(unit_name="Empty")


@pytest.fixture
def samples_model(fixtures_dir):
    return fixtures_dir / "samples.yaml"


@pytest.fixture
def samples_config(fixtures_dir):
    return fixtures_dir / "samples.editorconfig"
