"""
Core Module Package.

This package contains the infrastructure components that all
other modules depend on.

Components:
- clock: Unified time abstraction (wall, monotonic, sleep)
- state_manager: Validated state machines
- exceptions: Custom exception hierarchy
- constants: Agent names, readiness tokens, defaults
"""
