"""Setup configuration for prompttrace."""

from setuptools import setup, find_packages

setup(
    name="prompttrace",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "pexpect>=4.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "prompttrace=prompttrace.cli:app",
        ],
    },
    python_requires=">=3.8",
)
