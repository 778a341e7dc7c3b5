#!/usr/bin/env python
"""
Swarm checkpoints CLI entry point.

Usage:
    python cli.py list                               # List checkpoints
    python cli.py show <checkpoint-id>               # Inspect a checkpoint
    python cli.py status <checkpoint-id>             # Can it be resumed?
    python cli.py recover <checkpoint-id> --dry-run  # Preview recovery
"""

from src.swarm_checkpoint.cli.app import main

if __name__ == "__main__":
    main()
