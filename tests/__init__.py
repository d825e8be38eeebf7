"""
Cerberus Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (replication and CLI over in-memory logs)
"""
