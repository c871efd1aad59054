"""
Main analyzer - runs the null-argument validation rule over a compiled unit
"""

import time
import threading
from dataclasses import replace
from typing import Any, List, Mapping, Optional, Tuple
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

from .config import AnalyzerOptions
from .models import AnalysisResult, Diagnostic
from .program import Operation, SymbolProvider
from .analysis import (
    DEFAULT_MAX_ITERATIONS, DiagnosticReporter, NullCheckEngine,
    SymbolClassifier, ValidatorRegistry,
)

logger = logging.getLogger(__name__)


# (was analyzed, diagnostics); None when the operation was skipped after cancellation
OperationOutcome = Optional[Tuple[bool, List[Diagnostic]]]


class ParameterValidationAnalyzer:
    """Checks that externally visible operations validate reference arguments before use"""

    # Below this many operations the pool costs more than it saves
    PARALLEL_THRESHOLD = 8

    def __init__(self, options: Optional[AnalyzerOptions] = None, max_workers: int = 4,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS):
        self.options = options or AnalyzerOptions()
        self.max_workers = max_workers
        self.max_iterations = max_iterations

        # Built once and shared read-only by every worker
        self.classifier = SymbolClassifier(self.options)
        self.registry = ValidatorRegistry(self.options)
        self.reporter = DiagnosticReporter(self.options)

    @property
    def configuration_warnings(self) -> List[str]:
        warnings = list(self.options.warnings)
        warnings.extend(str(e) for e in self.classifier.configuration_errors)
        warnings.extend(self.registry.warnings)
        return warnings

    def analyze(self, provider: SymbolProvider,
                cancel_event: Optional[threading.Event] = None) -> AnalysisResult:
        """Analyze every operation the provider lists"""
        start_time = time.time()
        result = AnalysisResult(unit_name=provider.name)
        result.warnings.extend(self.configuration_warnings)

        if not self.options.enabled:
            logger.info(f"Rule disabled by configuration; skipping {provider.name}")
            result.operations_skipped = len(provider.list_operations())
            return result

        operations = provider.list_operations()
        engine = NullCheckEngine(self.registry, self.max_iterations, provider.resolve_call_target)
        logger.info(f"Analyzing {len(operations)} operations in {provider.name}...")

        if self.max_workers > 1 and len(operations) > self.PARALLEL_THRESHOLD:
            self._analyze_parallel(provider, engine, operations, result, cancel_event)
        else:
            self._analyze_sequential(provider, engine, operations, result, cancel_event)

        result.sort_diagnostics()
        result.duration_seconds = time.time() - start_time
        logger.info(f"Analysis complete: {len(result.diagnostics)} diagnostics in "
                    f"{result.duration_seconds:.2f}s")
        return result

    def _analyze_operation(self, provider: SymbolProvider, engine: NullCheckEngine,
                           operation: Operation,
                           cancel_event: Optional[threading.Event]) -> OperationOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return None

        parameters = provider.get_parameters(operation)
        cfg = provider.get_control_flow_graph(operation)
        if parameters != operation.parameters or cfg is not operation.cfg:
            operation = replace(operation, parameters=list(parameters), cfg=cfg)

        candidates = self.classifier.candidates(operation)
        if not candidates:
            return self.classifier.is_in_scope(operation), []

        sites = engine.analyze(operation, candidates)
        return True, self.reporter.report(operation, sites)

    def _record(self, result: AnalysisResult, outcome: OperationOutcome) -> None:
        if outcome is None:
            return
        analyzed, diagnostics = outcome
        if analyzed:
            result.operations_analyzed += 1
        else:
            result.operations_skipped += 1
        result.diagnostics.extend(diagnostics)

    def _record_error(self, result: AnalysisResult, operation: Operation, error: Exception) -> None:
        message = f"Error analyzing {operation.documentation_id}: {error}"
        logger.error(message)
        result.errors.append(message)

    def _analyze_sequential(self, provider: SymbolProvider, engine: NullCheckEngine,
                            operations: List[Operation], result: AnalysisResult,
                            cancel_event: Optional[threading.Event]) -> None:
        """Analyze operations one after another"""
        for operation in operations:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Analysis cancelled; keeping results of completed operations")
                result.cancelled = True
                return
            try:
                self._record(result, self._analyze_operation(provider, engine, operation, cancel_event))
            except Exception as e:
                self._record_error(result, operation, e)

    def _analyze_parallel(self, provider: SymbolProvider, engine: NullCheckEngine,
                          operations: List[Operation], result: AnalysisResult,
                          cancel_event: Optional[threading.Event]) -> None:
        """Analyze operations in parallel"""
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_operation = {
                executor.submit(self._analyze_operation, provider, engine, op, cancel_event): op
                for op in operations
            }

            for future in as_completed(future_to_operation):
                operation = future_to_operation[future]
                if future.cancelled():
                    result.cancelled = True
                    continue
                try:
                    outcome = future.result()
                except Exception as e:
                    self._record_error(result, operation, e)
                    continue
                if outcome is None:
                    result.cancelled = True
                self._record(result, outcome)

                if cancel_event is not None and cancel_event.is_set():
                    for pending in future_to_operation:
                        pending.cancel()

        if result.cancelled:
            logger.warning("Analysis cancelled; keeping results of completed operations")


def create_analyzer(config_files: Optional[List[str]] = None,
                    overrides: Optional[Mapping[str, Any]] = None,
                    max_workers: int = 4,
                    max_iterations: int = DEFAULT_MAX_ITERATIONS) -> ParameterValidationAnalyzer:
    """Factory function to create and configure an analyzer

    Args:
        config_files: editorconfig / globalconfig / YAML files, later files win
        overrides: Raw option entries applied on top of the files
        max_workers: Worker threads used for large units
        max_iterations: Fixpoint rounds before loops are treated conservatively

    Returns:
        Configured ParameterValidationAnalyzer instance
    """
    from .config import load_options

    options = load_options(config_files or [], overrides)
    return ParameterValidationAnalyzer(
        options=options,
        max_workers=max_workers,
        max_iterations=max_iterations,
    )
