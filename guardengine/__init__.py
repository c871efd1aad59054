"""
nullguard - Null-argument validation analyzer (CA1062).

Finds externally visible methods, constructors and accessors that
dereference a reference-typed parameter on some path without first
checking it for null or passing it to a recognized validator.

The analyzer works on a program model supplied by a compiler front end:
types, operations, parameters and per-operation control flow graphs.

Quick Start:
    >>> from guardengine import create_analyzer, load_compilation
    >>> analyzer = create_analyzer(config_files=[".editorconfig"])
    >>> result = analyzer.analyze(load_compilation("model.yaml"))
    >>> print(f"Found {len(result.active_diagnostics())} unvalidated parameters")

Output Formats:
    Console, CSV, JSON, SARIF 2.1.0
"""

__version__ = "0.3.0"
__author__ = "nullguard"

from .models import AnalysisResult, Diagnostic, Location, Severity, RULE_ID
from .config import AnalyzerOptions, load_options, parse_editorconfig
from .errors import GuardEngineError, ConfigurationParseError, ModelLoadError
from .program import (
    Accessibility, BasicBlock, BranchKind, Compilation, ControlFlowGraph,
    Expression, ExpressionKind, MethodRef, NullableAnnotation, Operation,
    OperationKind, Parameter, RefKind, SymbolProvider, TypeSymbol,
)
from .model_loader import ModelLoader, load_compilation
from .analyzer import ParameterValidationAnalyzer, create_analyzer
from .reporters import SARIFReporter, generate_sarif, get_reporter

__all__ = [
    # Results
    'AnalysisResult',
    'Diagnostic',
    'Location',
    'Severity',
    'RULE_ID',
    # Configuration
    'AnalyzerOptions',
    'load_options',
    'parse_editorconfig',
    # Errors
    'GuardEngineError',
    'ConfigurationParseError',
    'ModelLoadError',
    # Program model
    'Accessibility',
    'BasicBlock',
    'BranchKind',
    'Compilation',
    'ControlFlowGraph',
    'Expression',
    'ExpressionKind',
    'MethodRef',
    'NullableAnnotation',
    'Operation',
    'OperationKind',
    'Parameter',
    'RefKind',
    'SymbolProvider',
    'TypeSymbol',
    'ModelLoader',
    'load_compilation',
    # Analysis
    'ParameterValidationAnalyzer',
    'create_analyzer',
    # Reporting
    'SARIFReporter',
    'generate_sarif',
    'get_reporter',
]
