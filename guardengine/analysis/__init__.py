"""
Null-argument validation analysis for nullguard

This package holds the per-operation analysis pipeline:
- Symbol classification (visibility, exclusions, candidate parameters)
- Validator recognition (built-in guards, attributes, configured methods)
- Dereference scanning over expression trees
- Forward guard dataflow with a small GuardFact lattice
- Diagnostic construction
"""

from .guard_lattice import (
    GuardFact,
    GuardLattice,
    GuardState,
)

from .classifier import (
    SymbolClassifier,
    is_externally_visible,
    is_type_externally_visible,
)

from .validators import (
    BuiltinValidator,
    ValidatorRegistry,
)

from .dereference import (
    DereferenceScanner,
    DereferenceSite,
    ExpressionWalker,
    FlowEvent,
    FlowEventKind,
    LocalRef,
    Narrowing,
    narrowing,
)

from .engine import (
    DEFAULT_MAX_ITERATIONS,
    NullCheckEngine,
)

from .reporter import (
    DiagnosticReporter,
    is_suppressed,
)

__all__ = [
    # Lattice
    'GuardFact',
    'GuardLattice',
    'GuardState',
    # Classifier
    'SymbolClassifier',
    'is_externally_visible',
    'is_type_externally_visible',
    # Validators
    'BuiltinValidator',
    'ValidatorRegistry',
    # Scanner
    'DereferenceScanner',
    'DereferenceSite',
    'ExpressionWalker',
    'FlowEvent',
    'FlowEventKind',
    'LocalRef',
    'Narrowing',
    'narrowing',
    # Engine
    'DEFAULT_MAX_ITERATIONS',
    'NullCheckEngine',
    # Reporting
    'DiagnosticReporter',
    'is_suppressed',
]
