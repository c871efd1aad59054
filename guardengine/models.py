"""
Data models for nullguard.

This module defines the records the analyzer hands to its host:

- Severity: reporting level of a diagnostic
- Location: where a diagnostic points in source
- Diagnostic: one unvalidated parameter of one operation
- AnalysisResult: complete output of analyzing one compiled unit
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Iterator


RULE_ID = "CA1062"
RULE_TITLE = "Validate arguments of public methods"
RULE_CATEGORY = "Design"
RULE_HELP_URI = "https://learn.microsoft.com/dotnet/fundamentals/code-analysis/quality-rules/ca1062"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"
    SILENT = "silent"

    @property
    def priority(self) -> int:
        priorities = {
            Severity.ERROR: 4,
            Severity.WARNING: 3,
            Severity.SUGGESTION: 2,
            Severity.SILENT: 1,
        }
        return priorities[self]


@dataclass(frozen=True)
class Location:
    """Location of a diagnostic in source code"""
    file_path: str
    line_number: int
    column: Optional[int] = None
    end_line: Optional[int] = None
    end_column: Optional[int] = None
    snippet: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line_number}"


@dataclass
class Diagnostic:
    """An externally visible operation that uses a parameter before validating it"""
    operation_id: str  # Documentation ID of the operation
    operation_name: str  # Display form, e.g. "Person.Person(Person other)"
    parameter: str
    parameter_ordinal: int
    location: Location  # First unguarded dereference site
    message: str
    severity: Severity = Severity.WARNING
    rule_id: str = RULE_ID
    fix_hint: Optional[str] = None
    suppressed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.operation_id, self.parameter)

    def to_dict(self) -> Dict[str, Any]:
        """Convert diagnostic to dictionary"""
        return {
            'rule_id': self.rule_id,
            'operation': self.operation_id,
            'operation_name': self.operation_name,
            'parameter': self.parameter,
            'parameter_ordinal': self.parameter_ordinal,
            'message': self.message,
            'severity': self.severity.value,
            'file_path': self.location.file_path,
            'line_number': self.location.line_number,
            'column': self.location.column,
            'snippet': self.location.snippet,
            'fix_hint': self.fix_hint,
            'suppressed': self.suppressed,
        }


@dataclass
class AnalysisResult:
    """Result of analyzing one compiled unit"""
    unit_name: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    operations_analyzed: int = 0
    operations_skipped: int = 0
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)  # Configuration warnings
    cancelled: bool = False

    @property
    def summary(self) -> Dict[str, int]:
        """Get count of reported (unsuppressed) diagnostics by severity"""
        counts = {s.value: 0 for s in Severity}
        for diagnostic in self.active_diagnostics():
            counts[diagnostic.severity.value] += 1
        return counts

    def active_diagnostics(self) -> List[Diagnostic]:
        """Diagnostics not suppressed in source"""
        return [d for d in self.diagnostics if not d.suppressed]

    def get_diagnostics_by_severity(self, severity: Severity) -> List[Diagnostic]:
        return [d for d in self.active_diagnostics() if d.severity == severity]

    def filter_by_operation(self, operation_id: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.operation_id == operation_id]

    def filter_by_file(self, file_path: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.location.file_path == file_path]

    def sort_diagnostics(self) -> None:
        """Sort by file, then operation, then parameter declaration order"""
        self.diagnostics.sort(
            key=lambda d: (d.location.file_path, d.operation_id, d.parameter_ordinal)
        )

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.diagnostics)

    def __len__(self) -> int:
        return len(self.diagnostics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'unit_name': self.unit_name,
            'diagnostics': [d.to_dict() for d in self.diagnostics],
            'operations_analyzed': self.operations_analyzed,
            'operations_skipped': self.operations_skipped,
            'duration_seconds': self.duration_seconds,
            'errors': self.errors,
            'warnings': self.warnings,
            'cancelled': self.cancelled,
            'summary': self.summary,
        }
