#!/usr/bin/env python3
"""
Setup configuration for the defect-inference package
Allows installation via: pip install -e .
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read requirements from the runtime requirements file
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = [
    line.strip()
    for line in requirements_path.read_text().splitlines()
    if line.strip() and not line.startswith('#')
]

setup(
    name="defect-inference",
    version="1.0.0",
    author="Defect Inference Team",
    description="HTTP inference server for binary surface-defect classification with Keras models",
    long_description=(Path(__file__).parent / "README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "defect-inference-server=defect_inference.scripts.start_server:main",
        ],
    },
    include_package_data=True,
    keywords="machine-learning deep-learning keras defect-detection inference fastapi",
    zip_safe=False,
)
