"""
Setup configuration for rsi-trade package.

Supports both modern (pyproject.toml) and legacy installations.
"""
from setuptools import setup, find_packages

setup(
    name="rsi-trade",
    version="0.1.0",
    description="RSI-driven limit-order trading engine with self-healing market-data streams",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Trading System Team",
    license="MIT",
    url="https://github.com/yourusername/rsi_trade",
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    python_requires=">=3.9",
    install_requires=[
        "aiohttp>=3.8.0,<4.0",
        "pyyaml>=6.0,<7.0",
        "loguru>=0.7.0,<1.0",
        "pydantic>=2.0.0,<3.0",
        "numpy>=1.23,<3.0",
        "pandas>=1.5,<3.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0,<9.0",
            "pytest-asyncio>=0.21.0,<1.0",
        ],
        "dev": [
            "black>=23.0.0,<24.0",
            "ruff>=0.1.0,<1.0",
            "mypy>=1.0.0,<2.0",
            "isort>=5.12.0,<6.0",
            "pytest-cov>=4.0.0,<5.0",
            "pre-commit>=3.0.0,<4.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
