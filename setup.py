#!/usr/bin/env python3
# =============================================================================
#  refcount-checker: setup.py
#
#  Install for development with:
#      pip install -e ".[dev]"
#      python -m pytest
#
#  The checker reads dumps through Cppcheck's own ``cppcheckdata`` module,
#  which ships in Cppcheck's addons directory rather than on PyPI; put that
#  directory on PYTHONPATH when running against real dump files.
# =============================================================================

from __future__ import annotations

import re
from pathlib import Path

from setuptools import setup, find_packages

_HERE = Path(__file__).resolve().parent


def _read_version() -> str:
    """Extract ``__version__`` from the package so it is defined once."""
    init = _HERE / "refcount_checker" / "__init__.py"
    text = init.read_text(encoding="utf-8")
    match = re.search(r'^__version__\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match:
        return match.group(1)
    return "0.0.0"


def _read_long_description() -> str:
    """Read README.md for the long description."""
    readme = _HERE / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


setup(
    name="refcount-checker",
    version=_read_version(),
    description=(
        "Static verifier for manual reference counting in C++ code, "
        "driven by Cppcheck dump files."
    ),
    long_description=_read_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    author="refcount-checker contributors",
    python_requires=">=3.10",
    packages=find_packages(
        include=[
            "refcount_checker",
            "refcount_checker.*",
        ],
        exclude=[
            "tests",
            "tests.*",
        ],
    ),
    install_requires=[
        "termcolor>=2.1",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "ruff>=0.4",
            "mypy>=1.10",
        ],
        "test": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "refcount-checker=refcount_checker.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Software Development :: Quality Assurance",
    ],
    keywords=[
        "cppcheck",
        "static-analysis",
        "reference-counting",
        "data-flow",
    ],
    zip_safe=False,
)
