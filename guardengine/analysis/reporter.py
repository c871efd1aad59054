"""
Diagnostic Reporter - turns unguarded dereference sites into Diagnostics
"""

from __future__ import annotations

from typing import Iterable, List
import logging

from ..config import AnalyzerOptions
from ..models import Diagnostic, RULE_ID
from ..program import CONSTRUCTOR_NAME, STATIC_CONSTRUCTOR_NAME, Operation
from .dereference import DereferenceSite

logger = logging.getLogger(__name__)


MESSAGE_FORMAT = (
    "In externally visible method '{operation}', validate parameter '{parameter}' "
    "is non-null before using it. If appropriate, throw an 'ArgumentNullException' "
    "when the argument is 'null'."
)

FIX_HINT_FORMAT = "ArgumentNullException.ThrowIfNull({parameter});"


def is_suppressed(operation: Operation, rule_id: str = RULE_ID) -> bool:
    """Suppressed on the operation or on any containing type"""
    if rule_id in operation.suppressions:
        return True
    return any(rule_id in t.suppressions for t in operation.containing_type.enclosing_types())


def _message_name(operation: Operation) -> str:
    # Constructors read better as "Person.Person(Person other)"
    if operation.name in (CONSTRUCTOR_NAME, STATIC_CONSTRUCTOR_NAME):
        return operation.display_name
    return f"{operation.containing_type.qualified_name}.{operation.display_name.split('.', 1)[1]}"


class DiagnosticReporter:
    """One Diagnostic per (operation, parameter), in parameter declaration order"""

    def __init__(self, options: AnalyzerOptions):
        self.options = options

    def create(self, site: DereferenceSite) -> Diagnostic:
        operation = site.operation
        parameter = site.parameter
        return Diagnostic(
            operation_id=operation.documentation_id,
            operation_name=operation.display_name,
            parameter=parameter.name,
            parameter_ordinal=parameter.ordinal,
            location=site.location,
            message=MESSAGE_FORMAT.format(operation=_message_name(operation), parameter=parameter.name),
            severity=self.options.severity,
            fix_hint=FIX_HINT_FORMAT.format(parameter=parameter.name),
            suppressed=is_suppressed(operation),
            metadata={
                'parameter_type': parameter.type_name,
                'block': site.block_id,
                'index': site.index,
                'expression': site.expression.text,
            },
        )

    def report(self, operation: Operation, sites: Iterable[DereferenceSite]) -> List[Diagnostic]:
        diagnostics = {}
        for site in sorted(sites, key=lambda s: s.parameter.ordinal):
            if site.parameter.name in diagnostics:
                continue
            diagnostics[site.parameter.name] = self.create(site)
        if diagnostics:
            logger.debug(f"{operation.documentation_id}: {len(diagnostics)} unvalidated parameter(s)")
        return list(diagnostics.values())
