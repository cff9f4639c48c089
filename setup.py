#!/usr/bin/env python3
"""
condorbox: run GitHub projects as HTCondor docker jobs

Submit a repository to an HTCondor pool, collect its output and manage the
local container and SSH tooling around it.
"""

from pathlib import Path
from setuptools import setup, find_packages

# Project metadata
PROJECT_NAME = "condorbox"
VERSION = "0.1.0"
DESCRIPTION = "Submit GitHub projects to HTCondor as docker-universe jobs and sync their output"
LONG_DESCRIPTION = (Path(__file__).parent / "README.md").read_text(encoding="utf-8")
LONG_DESCRIPTION_CONTENT_TYPE = "text/markdown"
LICENSE = "MIT"
PYTHON_REQUIRES = ">=3.10"

# Core dependencies
INSTALL_REQUIRES = [
    "typer>=0.9.0",
    "rich>=13.0.0",
    "pyyaml>=6.0",
    "pydantic>=2.0",
    "psutil>=5.9.0",
    "requests>=2.31.0",
    "python-dotenv>=1.0.0,<2",
]

# Development dependencies
EXTRAS_REQUIRE = {
    "dev": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "black>=23.0.0",
        "ruff>=0.1.0",
        "mypy>=1.0.0",
        "pre-commit>=3.0.0",
    ],
    "test": [
        "pytest>=7.0.0",
        "pytest-cov>=4.0.0",
        "pytest-mock>=3.10.0",
        "coverage>=7.0.0",
    ],
}

# Include all extras in "all"
EXTRAS_REQUIRE["all"] = [
    dep for deps in EXTRAS_REQUIRE.values() for dep in deps
]

# Package classification
CLASSIFIERS = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "License :: OSI Approved :: MIT License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Systems Administration",
]

# Entry points (CLI commands)
ENTRY_POINTS = {
    "console_scripts": [
        "condorbox=condorbox.cli:main",
    ],
}

# Package discovery
PACKAGES = find_packages(where="src")
PACKAGE_DIR = {"": "src"}

# Setup configuration
setup(
    name=PROJECT_NAME,
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type=LONG_DESCRIPTION_CONTENT_TYPE,
    license=LICENSE,

    # Package configuration
    packages=PACKAGES,
    package_dir=PACKAGE_DIR,
    include_package_data=True,

    # Dependencies
    python_requires=PYTHON_REQUIRES,
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,

    # Entry points
    entry_points=ENTRY_POINTS,

    # Classification
    classifiers=CLASSIFIERS,

    # Additional metadata
    keywords="htcondor docker hpc batch jobs github rstudio",

    # Build configuration
    zip_safe=False,
    platforms=["any"],
)
