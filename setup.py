"""
Stepformer — Setup Script
==========================
Installs Stepformer as a local editable package so that all internal
imports (e.g. `from stepformer.pipeline import PipelineController`) work
from any script or notebook.

Usage:
    cd /path/to/stepformer
    pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name="stepformer",
    version="0.1.0",
    author="Aditya",
    description=(
        "Stepformer: a stage-by-stage numeric walkthrough of a Transformer "
        "encoder-decoder translating a short sentence"
    ),
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["stepformer", "stepformer.*"]),
    package_data={"stepformer.data": ["*.yaml"]},
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "torch>=2.1.0",
        "numpy>=1.24.0",
        "tqdm>=4.65.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Education",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
