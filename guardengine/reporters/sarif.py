"""
SARIF Output Format Reporter

Generates SARIF (Static Analysis Results Interchange Format) output so
diagnostics can be shown by IDEs and code-scanning services.

SARIF Spec: https://sarifweb.azurewebsites.net/
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..models import (
    AnalysisResult, Diagnostic, Severity,
    RULE_CATEGORY, RULE_HELP_URI, RULE_ID, RULE_TITLE,
)


SARIF_VERSION = "2.1.0"
SARIF_SCHEMA = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"

TOOL_NAME = "nullguard"
TOOL_VERSION = "0.3.0"


def severity_to_sarif_level(severity: Severity) -> str:
    """Convert severity to SARIF level."""
    mapping = {
        'error': 'error',
        'warning': 'warning',
        'suggestion': 'note',
        'silent': 'none',
    }
    return mapping.get(severity.value, 'warning')


def create_rule(severity: Severity = Severity.WARNING) -> Dict[str, Any]:
    """SARIF descriptor of the parameter validation rule."""
    return {
        "id": RULE_ID,
        "name": "ValidateArgumentsOfPublicMethods",
        "shortDescription": {
            "text": RULE_TITLE
        },
        "fullDescription": {
            "text": "An externally visible method dereferences one of its reference arguments "
                    "without verifying whether that argument is null."
        },
        "helpUri": RULE_HELP_URI,
        "help": {
            "text": "Validate the argument and throw ArgumentNullException when it is null, "
                    "or call a method registered in null_check_validation_methods.",
            "markdown": "**Fix:** `ArgumentNullException.ThrowIfNull(argument);` before the first use."
        },
        "defaultConfiguration": {
            "level": severity_to_sarif_level(severity)
        },
        "properties": {
            "category": RULE_CATEGORY,
            "tags": ["design", "null-safety"]
        }
    }


def create_result(diagnostic: Diagnostic, base_path: Optional[str] = None) -> Dict[str, Any]:
    """Create a SARIF result from a diagnostic."""
    file_path = diagnostic.location.file_path
    if base_path and file_path.startswith(base_path):
        file_path = file_path[len(base_path):].lstrip('/')

    region: Dict[str, Any] = {
        "startLine": diagnostic.location.line_number,
        "startColumn": diagnostic.location.column or 1
    }
    if diagnostic.location.end_line:
        region["endLine"] = diagnostic.location.end_line
    if diagnostic.location.snippet:
        region["snippet"] = {"text": diagnostic.location.snippet[:500]}

    result = {
        "ruleId": diagnostic.rule_id,
        "ruleIndex": 0,
        "level": severity_to_sarif_level(diagnostic.severity),
        "message": {
            "text": diagnostic.message
        },
        "locations": [
            {
                "physicalLocation": {
                    "artifactLocation": {
                        "uri": file_path,
                        "uriBaseId": "%SRCROOT%"
                    },
                    "region": region
                },
                "logicalLocations": [
                    {
                        "fullyQualifiedName": diagnostic.operation_id,
                        "kind": "member"
                    }
                ]
            }
        ]
    }

    # One diagnostic per (operation, parameter), so that pair identifies it across runs
    fingerprint = f"{diagnostic.rule_id}:{diagnostic.operation_id}:{diagnostic.parameter}"
    result["partialFingerprints"] = {
        "operationParameterHash": hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:32]
    }

    if diagnostic.suppressed:
        result["suppressions"] = [{"kind": "inSource"}]

    result["properties"] = {
        "parameter": diagnostic.parameter,
        "parameterOrdinal": diagnostic.parameter_ordinal,
    }
    if diagnostic.fix_hint:
        result["properties"]["fixHint"] = diagnostic.fix_hint

    return result


def generate_sarif(
    analysis_result: AnalysisResult,
    tool_name: str = TOOL_NAME,
    tool_version: str = TOOL_VERSION,
    base_path: Optional[str] = None,
    include_suppressed: bool = False
) -> Dict[str, Any]:
    """
    Generate SARIF report from analysis results.

    Args:
        analysis_result: Analysis results to convert
        tool_name: Name of the analysis tool
        tool_version: Version of the tool
        base_path: Base path to make paths relative
        include_suppressed: Include suppressed diagnostics (marked as inSource suppressions)

    Returns:
        SARIF document as dictionary
    """
    diagnostics = analysis_result.diagnostics
    if not include_suppressed:
        diagnostics = analysis_result.active_diagnostics()

    severity = diagnostics[0].severity if diagnostics else Severity.WARNING
    results = [create_result(d, base_path) for d in diagnostics]

    notifications = [
        {"level": "warning", "message": {"text": warning}} for warning in analysis_result.warnings
    ] + [
        {"level": "error", "message": {"text": error}} for error in analysis_result.errors
    ]

    sarif = {
        "$schema": SARIF_SCHEMA,
        "version": SARIF_VERSION,
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": tool_name,
                        "version": tool_version,
                        "rules": [create_rule(severity)]
                    }
                },
                "results": results,
                "invocations": [
                    {
                        "executionSuccessful": not analysis_result.errors and not analysis_result.cancelled,
                        "endTimeUtc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                        "toolConfigurationNotifications": notifications
                    }
                ],
                "originalUriBaseIds": {
                    "%SRCROOT%": {
                        "uri": f"file://{base_path}/" if base_path else ""
                    }
                },
                "properties": {
                    "unit": analysis_result.unit_name,
                    "operationsAnalyzed": analysis_result.operations_analyzed
                }
            }
        ]
    }

    return sarif


def write_sarif(
    analysis_result: AnalysisResult,
    output_path: str,
    tool_name: str = TOOL_NAME,
    tool_version: str = TOOL_VERSION,
    base_path: Optional[str] = None,
    include_suppressed: bool = False,
    pretty: bool = True
) -> str:
    """
    Write SARIF report to file.

    Returns:
        Path to written file
    """
    sarif = generate_sarif(analysis_result, tool_name, tool_version, base_path, include_suppressed)

    with open(output_path, 'w', encoding='utf-8') as f:
        if pretty:
            json.dump(sarif, f, indent=2)
        else:
            json.dump(sarif, f)

    return output_path


class SARIFReporter:
    """SARIF reporter class for integration."""

    def __init__(
        self,
        tool_name: str = TOOL_NAME,
        tool_version: str = TOOL_VERSION,
        include_suppressed: bool = False
    ):
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.include_suppressed = include_suppressed

    def generate(
        self,
        analysis_result: AnalysisResult,
        base_path: Optional[str] = None
    ) -> Dict[str, Any]:
        """Generate SARIF report."""
        return generate_sarif(
            analysis_result,
            self.tool_name,
            self.tool_version,
            base_path,
            self.include_suppressed
        )

    def write(
        self,
        analysis_result: AnalysisResult,
        output_path: str,
        base_path: Optional[str] = None
    ) -> str:
        """Write SARIF to file."""
        return write_sarif(
            analysis_result,
            output_path,
            self.tool_name,
            self.tool_version,
            base_path,
            self.include_suppressed
        )

    def report(
        self,
        result: AnalysisResult,
        output: Optional[str] = None
    ) -> str:
        """Generate SARIF report and optionally write to file."""
        content = json.dumps(self.generate(result), indent=2)
        if output:
            with open(output, 'w', encoding='utf-8') as f:
                f.write(content)
        else:
            print(content)
        return content
