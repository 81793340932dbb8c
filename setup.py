#!/usr/bin/env python3
"""Setup script for audit_history package.
"""

from setuptools import find_packages, setup

setup(
    name="audit_history",
    version="0.4.0",
    description="Grouped audit history browsing and Excel export",
    author="Audit History Team",
    packages=find_packages(include=["src*"]),
    py_modules=["history_export"],
    python_requires=">=3.10",
    install_requires=[
        "pandas>=1.5.0",
        "pyyaml>=6.0",
        "openpyxl>=3.0.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "hypothesis>=6.0.0",
            "black>=23.0.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "pandas-stubs>=2.0.0",
            "types-PyYAML>=6.0.0",
        ],
        "metrics": [
            "prometheus-client>=0.16.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "history-export=history_export:main",
        ],
    },
)
