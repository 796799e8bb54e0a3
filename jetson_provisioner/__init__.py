"""Jetson Orin provisioning (Python-first, step-driven).

Core design goals:
- Ordered, idempotent steps with re-checkable postconditions
- Fail-fast or fail-soft per step, structured exit codes per phase
- Fetch with fallback, scoped cleanup of scratch space
- Deterministic, checksummed manifests
- Centralized logging
"""

__all__ = []
