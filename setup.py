#!/usr/bin/env python
"""
Setup script for har-openapi.
"""

from setuptools import setup, find_packages

setup(
    name="har-openapi",
    version="1.0.0",
    description="Infer OpenAPI documents from HAR captures and sanitise HAR files for sharing",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.8",
    install_requires=[
        "ijson>=3.1.4",
        "tqdm>=4.64.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    entry_points={
        "console_scripts": [
            "har-openapi=har_openapi.cli:main",
        ],
    },
)
