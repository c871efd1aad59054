"""
Analyzer options - layered key/value configuration

Options arrive as key/value entries from ``.editorconfig`` /
``.globalconfig`` files or YAML documents. For every option the most
specific key wins:

    dotnet_code_quality.CA1062.<option>     (rule)
    dotnet_code_quality.Design.<option>     (category)
    dotnet_code_quality.<option>            (all rules)

The merged result is an immutable AnalyzerOptions value built once per
analyzed unit and shared read-only by every worker.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

import yaml

from .models import RULE_ID, RULE_CATEGORY, Severity

logger = logging.getLogger(__name__)


OPTION_EXCLUDE_EXTENSION_THIS = "exclude_extension_method_this_parameter"
OPTION_VALIDATION_METHODS = "null_check_validation_methods"
OPTION_EXCLUDED_SYMBOLS = "excluded_symbol_names"
OPTION_EXCLUDED_TYPES_WITH_DERIVED = "excluded_type_names_with_derived_types"

KNOWN_OPTIONS = (
    OPTION_EXCLUDE_EXTENSION_THIS,
    OPTION_VALIDATION_METHODS,
    OPTION_EXCLUDED_SYMBOLS,
    OPTION_EXCLUDED_TYPES_WITH_DERIVED,
)

SEVERITY_KEY = f"dotnet_diagnostic.{RULE_ID}.severity"

_SEVERITY_VALUES = {
    'error': Severity.ERROR,
    'warning': Severity.WARNING,
    'suggestion': Severity.SUGGESTION,
    'info': Severity.SUGGESTION,
    'silent': Severity.SILENT,
    'hidden': Severity.SILENT,
    'default': Severity.WARNING,
}


def option_keys(option: str) -> List[str]:
    """Keys that may carry an option, most specific first (lowercase)"""
    return [
        f"dotnet_code_quality.{RULE_ID}.{option}".lower(),
        f"dotnet_code_quality.{RULE_CATEGORY}.{option}".lower(),
        f"dotnet_code_quality.{option}".lower(),
    ]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "|".join(str(v) for v in value)
    return str(value).strip()


@dataclass(frozen=True)
class AnalyzerOptions:
    """Fully merged options for one analyzed unit"""
    exclude_extension_method_this_parameter: bool = False
    null_check_validation_methods: str = ""
    excluded_symbol_names: str = ""
    excluded_type_names_with_derived_types: str = ""
    severity: Severity = Severity.WARNING
    enabled: bool = True
    warnings: Tuple[str, ...] = ()

    @classmethod
    def from_entries(cls, entries: Mapping[str, Any]) -> 'AnalyzerOptions':
        """Resolve options from raw entries using rule > category > global precedence"""
        normalized = {str(k).strip().lower(): v for k, v in entries.items()}
        warnings: List[str] = []

        def lookup(option: str) -> Optional[Any]:
            for key in option_keys(option):
                if key in normalized:
                    return normalized[key]
            return None

        exclude_this = False
        raw_bool = lookup(OPTION_EXCLUDE_EXTENSION_THIS)
        if raw_bool is not None:
            text = _as_text(raw_bool).lower()
            if text in ('true', 'false'):
                exclude_this = text == 'true'
            else:
                message = f"{OPTION_EXCLUDE_EXTENSION_THIS}: expected true or false, got '{raw_bool}'"
                logger.warning(message)
                warnings.append(message)

        severity = Severity.WARNING
        enabled = True
        raw_severity = normalized.get(SEVERITY_KEY.lower())
        if raw_severity is not None:
            text = _as_text(raw_severity).lower()
            if text == 'none':
                enabled = False
            elif text in _SEVERITY_VALUES:
                severity = _SEVERITY_VALUES[text]
            else:
                message = f"{SEVERITY_KEY}: unknown severity '{raw_severity}'"
                logger.warning(message)
                warnings.append(message)

        return cls(
            exclude_extension_method_this_parameter=exclude_this,
            null_check_validation_methods=_as_text(lookup(OPTION_VALIDATION_METHODS)),
            excluded_symbol_names=_as_text(lookup(OPTION_EXCLUDED_SYMBOLS)),
            excluded_type_names_with_derived_types=_as_text(lookup(OPTION_EXCLUDED_TYPES_WITH_DERIVED)),
            severity=severity,
            enabled=enabled,
            warnings=tuple(warnings),
        )


# ============================================================
# OPTION SOURCES
# ============================================================

def parse_editorconfig(text: str) -> Dict[str, str]:
    """
    Parse editorconfig / globalconfig text into key/value entries.

    Section headers and comment lines are skipped; all sections are
    merged, later entries overriding earlier ones.
    """
    entries: Dict[str, str] = {}
    for line_number, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line or line.startswith(('#', ';')):
            continue
        if line.startswith('[') and line.endswith(']'):
            continue
        key, sep, value = line.partition('=')
        if not sep or not key.strip():
            logger.debug(f"Ignoring line {line_number} without key/value: {raw_line!r}")
            continue
        entries[key.strip()] = value.strip()
    return entries


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(_flatten(value, full_key))
        else:
            flat[full_key] = value
    return flat


def load_option_entries(path: Path) -> Tuple[Dict[str, Any], List[str]]:
    """
    Read option entries from a file.

    YAML files (.yaml/.yml) may nest keys (``dotnet_code_quality: {CA1062: ...}``);
    anything else is read as editorconfig text. Problems are returned as
    warnings rather than raised.
    """
    warnings: List[str] = []
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        message = f"Cannot read configuration file {path}: {e}"
        logger.error(message)
        return {}, [message]

    if path.suffix.lower() in ('.yaml', '.yml'):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            message = f"Invalid YAML in configuration file {path}: {e}"
            logger.error(message)
            return {}, [message]
        if data is None:
            return {}, warnings
        if not isinstance(data, Mapping):
            message = f"Configuration file {path} must contain a mapping"
            logger.error(message)
            return {}, [message]
        return _flatten(data), warnings

    return parse_editorconfig(text), warnings


def load_options(paths: Iterable[Path] = (),
                 overrides: Optional[Mapping[str, Any]] = None) -> AnalyzerOptions:
    """Merge entries from files (later files win) and overrides, then resolve"""
    entries: Dict[str, Any] = {}
    warnings: List[str] = []

    for path in paths:
        file_entries, file_warnings = load_option_entries(Path(path))
        entries.update(file_entries)
        warnings.extend(file_warnings)
        logger.info(f"Loaded {len(file_entries)} configuration entries from {path}")

    if overrides:
        entries.update(overrides)

    options = AnalyzerOptions.from_entries(entries)
    if warnings:
        options = replace(options, warnings=tuple(warnings) + options.warnings)
    return options
