"""
Validator Registry - recognition of null-check validation methods

A validator is a routine that throws (or otherwise stops) when handed
null, so code after a successful call may assume the argument is
non-null. Validators come from three places:

1. Platform guards such as ``ArgumentNullException.ThrowIfNull``
2. Callee parameters marked ``[ValidatedNotNull]``
3. The ``null_check_validation_methods`` option
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Set
import logging

from ..config import AnalyzerOptions, OPTION_VALIDATION_METHODS
from ..program import MethodRef
from ..symbol_names import SymbolNameSet, method_ref_identity

logger = logging.getLogger(__name__)


VALIDATED_NOT_NULL_ATTRIBUTE = "ValidatedNotNullAttribute"


def has_validated_not_null(attributes) -> bool:
    """Match the attribute by simple name; projects declare their own copy in any namespace"""
    for attribute in attributes:
        simple = attribute.rsplit('.', 1)[-1]
        if simple in (VALIDATED_NOT_NULL_ATTRIBUTE, "ValidatedNotNull"):
            return True
    return False


@dataclass(frozen=True)
class BuiltinValidator:
    """A platform method known to throw on a null argument"""
    method_name: str
    containing_type: str
    argument_index: int = 0
    description: str = ""

    def matches(self, callee: MethodRef) -> bool:
        return callee.name == self.method_name and callee.containing_type == self.containing_type


class ValidatorRegistry:
    """
    Matchable set of validators for one analyzed unit.

    Immutable after construction. Configured validators mark every
    argument that is a reference parameter of the callee (positional
    correspondence); built-ins and ``[ValidatedNotNull]`` mark only their
    own argument position.
    """

    BUILTIN_VALIDATORS = [
        BuiltinValidator(
            method_name='ThrowIfNull',
            containing_type='System.ArgumentNullException',
            description="ArgumentNullException.ThrowIfNull(argument)"
        ),
        BuiltinValidator(
            method_name='ThrowIfNullOrEmpty',
            containing_type='System.ArgumentException',
            description="ArgumentException.ThrowIfNullOrEmpty(argument)"
        ),
        BuiltinValidator(
            method_name='ThrowIfNullOrWhiteSpace',
            containing_type='System.ArgumentException',
            description="ArgumentException.ThrowIfNullOrWhiteSpace(argument)"
        ),
    ]

    def __init__(self, options: Optional[AnalyzerOptions] = None):
        options = options or AnalyzerOptions()
        self.configured, errors = SymbolNameSet.parse(
            options.null_check_validation_methods, OPTION_VALIDATION_METHODS
        )
        self.warnings: List[str] = [str(e) for e in errors]
        logger.debug(f"Validator registry: {len(self.configured)} configured, "
                     f"{len(self.BUILTIN_VALIDATORS)} built-in")

    def _builtin(self, callee: MethodRef) -> Optional[BuiltinValidator]:
        for validator in self.BUILTIN_VALIDATORS:
            if validator.matches(callee):
                return validator
        return None

    def _attributed_ordinals(self, callee: MethodRef) -> Set[int]:
        return {
            ordinal for ordinal, attributes in enumerate(callee.parameter_attributes)
            if has_validated_not_null(attributes)
        }

    def is_configured(self, callee: MethodRef) -> bool:
        return bool(self.configured) and self.configured.matches(method_ref_identity(callee))

    def is_validator_call(self, callee: Optional[MethodRef]) -> bool:
        """Whether a call to callee establishes non-null for (some of) its arguments"""
        if callee is None:
            return False
        if self._builtin(callee) is not None:
            return True
        if self._attributed_ordinals(callee):
            return True
        return self.is_configured(callee)

    def validated_ordinals(self, callee: Optional[MethodRef], argument_count: int) -> List[int]:
        """Argument positions that are non-null after a normal return from callee"""
        if callee is None or argument_count <= 0:
            return []

        ordinals: Set[int] = set(self._attributed_ordinals(callee))

        builtin = self._builtin(callee)
        if builtin is not None:
            ordinals.add(builtin.argument_index)

        if self.is_configured(callee):
            ordinals.update(i for i in range(argument_count) if callee.accepts_reference(i))

        return sorted(i for i in ordinals if i < argument_count)
