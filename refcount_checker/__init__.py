"""
refcount_checker
================

Static verifier for manual reference-counting discipline in C++ code that
follows a "Box"-style object model.  Functions are read from
``cppcheck --dump`` output and checked one at a time by a structural
ownership dataflow.

Quick start::

    from refcount_checker import RefcheckRunner, load_dump

    data = load_dump("module.cpp.dump")
    results = RefcheckRunner().run_all_configurations(data)
    print(results.summary())
"""

from refcount_checker.config import RefcheckConfig, load_config
from refcount_checker.dataflow_engine import DataflowEngine, FunctionResult, analyze_function
from refcount_checker.driver import RefcheckResults, RefcheckRunner, is_library_path, run_addon
from refcount_checker.errors import (
    AnalysisLimitation,
    RefcheckError,
    RefcountInvariantViolation,
    UnsupportedConstruct,
    Violation,
    ViolationKind,
)
from refcount_checker.frontend import DumpFrontend, load_dump

__version__ = "0.1.0"

__all__ = [
    "AnalysisLimitation",
    "DataflowEngine",
    "DumpFrontend",
    "FunctionResult",
    "RefcheckConfig",
    "RefcheckError",
    "RefcheckResults",
    "RefcheckRunner",
    "RefcountInvariantViolation",
    "UnsupportedConstruct",
    "Violation",
    "ViolationKind",
    "analyze_function",
    "is_library_path",
    "load_config",
    "load_dump",
    "run_addon",
]
