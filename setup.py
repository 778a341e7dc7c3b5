"""Setup configuration for agent-swarm-checkpoint package."""

from setuptools import setup, find_packages

setup(
    name="agent-swarm-checkpoint",
    version="0.1.0",
    description="Checkpoint persistence and recovery for multi-agent workflows",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "aiofiles>=23.2.1",
        "click>=8.1.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "black>=23.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "swarm-checkpoints=swarm_checkpoint.cli.app:main",
        ],
    },
)
