"""
Setup configuration for consumerlab package.
"""

from setuptools import setup, find_packages

setup(
    name="consumerlab",
    version="0.1.0",
    description="Synthetic consumer panel recruitment and concept preference analysis",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "openai>=1.30",
        "tenacity>=8.2",
        "slowapi>=0.1.9",
        "logfire>=0.40",
        "click>=8.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.26",
        ],
    },
    entry_points={
        "console_scripts": [
            "consumerlab=consumerlab.cli.main:cli",
        ],
    },
)
