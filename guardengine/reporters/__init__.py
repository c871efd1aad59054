"""
Report Generators for nullguard
"""

import csv
import json
import io
import sys
from typing import List, Optional
from datetime import datetime

from ..models import AnalysisResult, Diagnostic, RULE_ID, RULE_TITLE

from .sarif import SARIFReporter, generate_sarif, write_sarif


class BaseReporter:
    """Base class for reporters"""

    def __init__(self, include_suppressed: bool = False):
        self.include_suppressed = include_suppressed

    def report(self, result: AnalysisResult, output: Optional[str] = None) -> str:
        """Generate report and optionally write to file"""
        raise NotImplementedError

    def _diagnostics(self, result: AnalysisResult) -> List[Diagnostic]:
        if self.include_suppressed:
            return list(result.diagnostics)
        return result.active_diagnostics()

    def _write_output(self, content: str, output: Optional[str]) -> None:
        """Write content to file or stdout"""
        if output:
            with open(output, 'w', encoding='utf-8') as f:
                f.write(content)
        else:
            print(content)


class ConsoleReporter(BaseReporter):
    """Console/terminal output reporter with colors"""

    COLORS = {
        'error': '\033[91m',
        'warning': '\033[93m',
        'suggestion': '\033[96m',
        'silent': '\033[90m',
        'reset': '\033[0m',
        'bold': '\033[1m',
        'green': '\033[92m',
    }

    def __init__(self, use_colors: bool = True, verbose: bool = False, include_suppressed: bool = False):
        super().__init__(include_suppressed)
        self.use_colors = use_colors and sys.stdout.isatty()
        self.verbose = verbose

    def _color(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"

    def report(self, result: AnalysisResult, output: Optional[str] = None) -> str:
        lines = []

        lines.append("")
        lines.append(self._color("=" * 60, 'bold'))
        lines.append(self._color(f"  {RULE_ID}: {RULE_TITLE.upper()}", 'bold'))
        lines.append(self._color("=" * 60, 'bold'))
        lines.append("")

        lines.append(f"Unit: {result.unit_name}")
        lines.append(f"Operations analyzed: {result.operations_analyzed}")
        lines.append(f"Operations skipped: {result.operations_skipped}")
        lines.append(f"Duration: {result.duration_seconds:.2f} seconds")
        if result.cancelled:
            lines.append(self._color("Analysis was cancelled; results are partial", 'warning'))
        lines.append("")

        diagnostics = self._diagnostics(result)
        if not diagnostics:
            lines.append(self._color("All externally visible parameters are validated.", 'green'))
        else:
            lines.append(self._color(f"DIAGNOSTICS ({len(diagnostics)} total):", 'bold'))
            lines.append("-" * 60)

            for diagnostic in diagnostics:
                label = f"[{diagnostic.severity.value.upper()}]"
                if diagnostic.suppressed:
                    label += " (suppressed)"
                lines.append("")
                lines.append(f"{self._color(label, diagnostic.severity.value)} "
                             f"{self._color(diagnostic.operation_name, 'bold')}")
                lines.append(f"  Parameter: {diagnostic.parameter}")
                lines.append(f"  Location: {diagnostic.location}")
                if diagnostic.location.snippet:
                    lines.append(f"  Code: {diagnostic.location.snippet[:80]}")

                if self.verbose:
                    lines.append(f"  Message: {diagnostic.message}")
                    if diagnostic.fix_hint:
                        lines.append(f"  Fix: {diagnostic.fix_hint}")

        if result.warnings:
            lines.append("")
            lines.append(self._color("CONFIGURATION WARNINGS:", 'warning'))
            for warning in result.warnings:
                lines.append(f"  - {warning}")

        if result.errors:
            lines.append("")
            lines.append(self._color("ERRORS:", 'error'))
            for error in result.errors:
                lines.append(f"  - {error}")

        lines.append("")
        lines.append(self._color("=" * 60, 'bold'))

        content = "\n".join(lines)
        self._write_output(content, output)
        return content


class CSVReporter(BaseReporter):
    """CSV format reporter"""

    COLUMNS = [
        'rule_id', 'severity', 'operation', 'operation_name', 'parameter',
        'parameter_ordinal', 'file_path', 'line_number', 'column', 'snippet',
        'suppressed', 'message',
    ]

    def report(self, result: AnalysisResult, output: Optional[str] = None) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=self.COLUMNS, extrasaction='ignore')
        writer.writeheader()

        for diagnostic in self._diagnostics(result):
            row = diagnostic.to_dict()
            row['column'] = row['column'] or ''
            row['snippet'] = row['snippet'] or ''
            writer.writerow(row)

        content = buffer.getvalue()

        if output:
            with open(output, 'w', encoding='utf-8', newline='') as f:
                f.write(content)
        else:
            print(content, end='')

        return content


class JSONReporter(BaseReporter):
    """JSON format reporter"""

    def report(self, result: AnalysisResult, output: Optional[str] = None) -> str:
        diagnostics = self._diagnostics(result)
        report_data = {
            'analysis_info': {
                'unit': result.unit_name,
                'rule_id': RULE_ID,
                'timestamp': datetime.now().isoformat(),
                'operations_analyzed': result.operations_analyzed,
                'operations_skipped': result.operations_skipped,
                'duration_seconds': result.duration_seconds,
                'cancelled': result.cancelled,
            },
            'summary': result.summary,
            'total_diagnostics': len(diagnostics),
            'diagnostics': [d.to_dict() for d in diagnostics],
            'warnings': result.warnings,
            'errors': result.errors,
        }

        content = json.dumps(report_data, indent=2)
        self._write_output(content, output)
        return content


def get_reporter(format: str, **kwargs) -> BaseReporter:
    """Factory function to get reporter by format"""
    reporters = {
        'console': ConsoleReporter,
        'csv': CSVReporter,
        'json': JSONReporter,
        'sarif': SARIFReporter,
    }

    reporter_class = reporters.get(format.lower())
    if not reporter_class:
        raise ValueError(f"Unknown report format: {format}. Supported: {list(reporters.keys())}")

    return reporter_class(**kwargs)


__all__ = [
    'BaseReporter',
    'ConsoleReporter',
    'CSVReporter',
    'JSONReporter',
    'SARIFReporter',
    'get_reporter',
    'generate_sarif',
    'write_sarif',
]
