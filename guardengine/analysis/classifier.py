"""
Symbol Classifier - decides which operations and parameters are analyzed

An operation is in scope when unknown code can call it (externally
visible), it has a body, and configuration does not exclude it. Its
candidate parameters are the reference-typed ones whose null state the
platform does not already track.
"""

from __future__ import annotations

from typing import Iterator, List, Tuple
import logging

from ..config import (
    AnalyzerOptions, OPTION_EXCLUDED_SYMBOLS, OPTION_EXCLUDED_TYPES_WITH_DERIVED,
)
from ..errors import ConfigurationParseError
from ..program import (
    Accessibility, NullableAnnotation, Operation, Parameter, RefKind, TypeSymbol,
)
from ..symbol_names import (
    SymbolIdentity, SymbolNameSet,
    namespace_identities, operation_identity, qualified_type_identity, type_identity,
)

logger = logging.getLogger(__name__)


_PROTECTED_KINDS = {Accessibility.PROTECTED, Accessibility.PROTECTED_INTERNAL}


def _member_visible(accessibility: Accessibility, container: TypeSymbol) -> bool:
    """Whether a member with this accessibility is reachable through a visible container"""
    if accessibility == Accessibility.PUBLIC:
        return True
    if accessibility in _PROTECTED_KINDS:
        # Protected members are reachable only by deriving from the container
        return not container.is_sealed
    return False


def is_type_externally_visible(type_symbol: TypeSymbol) -> bool:
    """A type is visible when it and every containing type are reachable from outside"""
    for current in type_symbol.enclosing_types():
        if current.containing_type is None:
            if current.accessibility != Accessibility.PUBLIC:
                return False
        elif not _member_visible(current.accessibility, current.containing_type):
            return False
    return True


def is_externally_visible(operation: Operation) -> bool:
    if not _member_visible(operation.accessibility, operation.containing_type):
        return False
    return is_type_externally_visible(operation.containing_type)


class SymbolClassifier:
    """
    Pure queries over symbols plus configuration.

    Built once per analyzed unit; read-only afterwards and safe to share
    between worker threads.
    """

    def __init__(self, options: AnalyzerOptions):
        self.options = options
        self.excluded_symbols, symbol_errors = SymbolNameSet.parse(
            options.excluded_symbol_names, OPTION_EXCLUDED_SYMBOLS
        )
        self.excluded_types_with_derived, type_errors = SymbolNameSet.parse(
            options.excluded_type_names_with_derived_types, OPTION_EXCLUDED_TYPES_WITH_DERIVED
        )
        self.configuration_errors: Tuple[ConfigurationParseError, ...] = tuple(symbol_errors + type_errors)

    def is_externally_visible(self, operation: Operation) -> bool:
        return is_externally_visible(operation)

    def _exclusion_identities(self, operation: Operation) -> Iterator[SymbolIdentity]:
        yield operation_identity(operation)
        for type_symbol in operation.containing_type.enclosing_types():
            yield type_identity(type_symbol)
        yield from namespace_identities(operation.containing_type.containing_namespace)

    def _derived_type_identities(self, operation: Operation) -> Iterator[SymbolIdentity]:
        for type_symbol in operation.containing_type.enclosing_types():
            yield type_identity(type_symbol)
            for base in type_symbol.base_types:
                yield qualified_type_identity(base)

    def is_excluded(self, operation: Operation) -> bool:
        """Excluded by name: the operation, a containing type or a containing namespace"""
        if self.excluded_symbols and self.excluded_symbols.matches_any(self._exclusion_identities(operation)):
            return True
        if self.excluded_types_with_derived and self.excluded_types_with_derived.matches_any(
                self._derived_type_identities(operation)):
            return True
        return False

    def is_in_scope(self, operation: Operation) -> bool:
        if not self.options.enabled:
            return False
        if operation.cfg is None:
            return False
        if not self.is_externally_visible(operation):
            return False
        if self.is_excluded(operation):
            logger.debug(f"Skipping excluded operation {operation.documentation_id}")
            return False
        return True

    def is_extension_receiver(self, operation: Operation, parameter: Parameter) -> bool:
        return parameter.is_this or (operation.is_extension_method and parameter.ordinal == 0)

    def is_candidate(self, operation: Operation, parameter: Parameter) -> bool:
        if not parameter.is_reference_type:
            return False
        if parameter.ref_kind == RefKind.OUT:
            return False
        if parameter.nullable_annotation == NullableAnnotation.NOT_ANNOTATED:
            return False
        if (self.options.exclude_extension_method_this_parameter
                and self.is_extension_receiver(operation, parameter)):
            return False
        return True

    def candidates(self, operation: Operation) -> List[Parameter]:
        """Candidate parameters in declaration order; empty when out of scope"""
        if not self.is_in_scope(operation):
            return []
        return [p for p in operation.parameters if self.is_candidate(operation, p)]
