"""
refcount_checker/driver.py
══════════════════════════

Runs the dataflow engine over every function of a translation unit.

  ┌──────────────┐   iter_function_scopes   ┌──────────────┐
  │ cppcheck cfg │─────────────────────────►│ DumpFrontend │
  └──────────────┘                          └──────┬───────┘
                     skip library paths            │ FunctionDef
                                                   ▼
                                           ┌───────────────┐
                                           │ DataflowEngine│
                                           └──────┬────────┘
                                                  │ FunctionResult
                                                  ▼
                              RefcheckResults (+ suppressed Diagnostics)

Unsupported constructs and analysis limitations are recoverable: they are
recorded at information level and the run moves on.  Refcount invariant
violations are errors.  With ``fail_fast`` the first function with an
unsuppressed finding of any kind ends the run.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TextIO, Union

from refcount_checker.config import DEFAULT_EXCLUDED_PATHS, RefcheckConfig
from refcount_checker.dataflow_engine import DataflowEngine, FunctionResult
from refcount_checker.diagnostics import Diagnostic, DiagnosticSeverity, SuppressionManager
from refcount_checker.errors import RefcheckError, Violation
from refcount_checker.frontend import DumpFrontend, FrontendUnavailable, load_dump, token_location
from refcount_checker.nodes import FunctionDef

_log = logging.getLogger(__name__)

EXIT_OK: int = 0
EXIT_VIOLATIONS: int = 1
EXIT_INFRA: int = 2

OUTPUT_FORMATS = ("json", "gcc", "summary")


def is_library_path(path: str, excluded: Sequence[str] = DEFAULT_EXCLUDED_PATHS) -> bool:
    """True when *path* belongs to a system or toolchain library."""
    return any(part in path for part in excluded)


@dataclass
class RefcheckResults:
    """
    Aggregated outcome of a run.

    Attributes
    ----------
    results       : one FunctionResult per checked function
    diagnostics   : findings left after suppression
    checked       : functions analysed
    passed        : functions with no violation
    skipped       : functions skipped as library code
    stopped_early : the run ended at a failure because of ``fail_fast``
    stats         : timings in milliseconds
    """
    results: List[FunctionResult] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    checked: int = 0
    passed: int = 0
    skipped: int = 0
    stopped_early: bool = False
    stats: Dict[str, float] = field(default_factory=dict)

    @property
    def violations(self) -> List[Violation]:
        return [v for r in self.results for v in r.violations]

    @property
    def failed_functions(self) -> List[FunctionResult]:
        return [r for r in self.results if r.failed]

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == DiagnosticSeverity.ERROR)

    @property
    def information_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == DiagnosticSeverity.INFORMATION)

    def add_time(self, key: str, elapsed_ms: float) -> None:
        self.stats[key] = self.stats.get(key, 0.0) + elapsed_ms

    def to_json_lines(self) -> str:
        """Format all diagnostics as cppcheck JSON addon output."""
        return "\n".join(d.to_json_str() for d in self.diagnostics)

    def to_gcc_format(self) -> str:
        return "\n".join(d.to_gcc_format() for d in self.diagnostics)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Refcount check complete: {self.checked} functions checked, "
            f"{self.passed} passed, {self.skipped} skipped",
            f"  {self.error_count} errors, {self.information_count} not analysed",
        ]
        if self.stopped_early:
            lines.append("  stopped at first failure (fail-fast)")
        for d in self.diagnostics:
            lines.append(d.render_terminal())
        return "\n".join(lines)


class RefcheckRunner:
    """
    Checks every function of one or more cppcheck Configurations.

    Usage
    -----
    >>> runner = RefcheckRunner(RefcheckConfig(owned_prefix="Py"))
    >>> results = runner.run(cfg)
    >>> print(results.summary())
    """

    def __init__(
        self,
        config: Optional[RefcheckConfig] = None,
        engine: Optional[DataflowEngine] = None,
        suppressions: Optional[SuppressionManager] = None,
    ) -> None:
        self.config = config or RefcheckConfig()
        self.engine = engine or DataflowEngine(config=self.config)
        self.suppressions = suppressions or SuppressionManager()
        for error_id in self.config.suppress:
            self.suppressions.add_global_suppression(error_id)

    def check_function(self, func: FunctionDef) -> FunctionResult:
        return self.engine.analyze_function(func)

    def check_functions(
        self,
        funcs: Iterable[FunctionDef],
        results: Optional[RefcheckResults] = None,
    ) -> RefcheckResults:
        """Check already-built function trees, skipping library code."""
        results = results or RefcheckResults()
        for func in funcs:
            if is_library_path(func.loc.file, self.config.excluded_paths):
                results.skipped += 1
                continue
            if not self._check(results, func.name, func.loc, lambda f=func: f):
                break
        return results

    def run(self, cfg: Any, results: Optional[RefcheckResults] = None) -> RefcheckResults:
        """
        Check every function defined in a single Configuration.

        Parameters
        ----------
        cfg     : cppcheckdata.Configuration
        results : accumulator to extend, a fresh one when omitted
        """
        results = results or RefcheckResults()
        self.suppressions.load_inline_suppressions(cfg)
        frontend = DumpFrontend(cfg)

        for scope in frontend.iter_function_scopes():
            if is_library_path(frontend.scope_file(scope), self.config.excluded_paths):
                results.skipped += 1
                continue
            name = frontend.scope_name(scope)
            loc = token_location(getattr(scope.function, "token", None) or scope.bodyStart)
            if not self._check(results, name, loc, lambda s=scope: frontend.build_function(s)):
                break
        return results

    def run_all_configurations(self, data: Any) -> RefcheckResults:
        """Check every configuration in a parsed dump."""
        results = RefcheckResults()
        for cfg in getattr(data, "configurations", None) or []:
            _log.debug("Checking configuration %r", getattr(cfg, "name", ""))
            self.run(cfg, results)
            if results.stopped_early:
                break
        _log.info(
            "%d functions checked, %d passed, %d skipped, %d errors",
            results.checked, results.passed, results.skipped, results.error_count,
        )
        return results

    def _check(
        self,
        results: RefcheckResults,
        name: str,
        loc: Any,
        build: Callable[[], FunctionDef],
    ) -> bool:
        """Check one function; returns False when the run must stop."""
        t0 = time.monotonic()
        try:
            func = build()
        except RefcheckError as exc:
            _log.debug("%s: not translated: %s", name, exc)
            result = FunctionResult(function_name=name, location=loc)
            result.violations.append(Violation.from_error(exc, name))
        else:
            t1 = time.monotonic()
            results.add_time("frontend_ms", (t1 - t0) * 1000.0)
            result = self.check_function(func)
            results.add_time("analysis_ms", (time.monotonic() - t1) * 1000.0)

        results.results.append(result)
        results.checked += 1
        if result.ok:
            results.passed += 1
            _log.debug("%s: ok", name)
            return True

        reported = 0
        for violation in result.violations:
            _log.debug("%s: %s", name, violation)
            diag = Diagnostic.from_violation(violation)
            if self.suppressions.is_suppressed(diag):
                continue
            results.diagnostics.append(diag)
            reported += 1

        if self.config.fail_fast and reported:
            results.stopped_early = True
            return False
        return True


def _write(stream: TextIO, text: str) -> None:
    if text:
        stream.write(text + "\n")


def run_addon(
    dump_file: Union[str, Path],
    config: Optional[RefcheckConfig] = None,
    output: str = "json",
    stream: Optional[TextIO] = None,
) -> int:
    """
    Check a ``cppcheck --dump`` file and print the findings.

    Returns
    -------
    Exit code: 0 clean, 1 refcount violations (or a fail-fast stop),
    2 when the dump cannot be loaded.
    """
    stream = stream or sys.stdout
    config = config or RefcheckConfig()

    try:
        data = load_dump(dump_file)
    except FrontendUnavailable as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        return EXIT_INFRA
    except OSError as exc:
        sys.stderr.write(f"ERROR: cannot read {dump_file}: {exc}\n")
        return EXIT_INFRA

    results = RefcheckRunner(config).run_all_configurations(data)

    if output == "json":
        _write(stream, results.to_json_lines())
    elif output == "gcc":
        _write(stream, results.to_gcc_format())
    else:
        _write(stream, results.summary())

    if results.error_count > 0 or results.stopped_early:
        return EXIT_VIOLATIONS
    return EXIT_OK
