"""Checkpoint operator CLI."""
