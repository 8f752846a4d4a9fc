"""
Shared helpers for the instance state store.

Modules:
- config: environment-driven backend configuration
- logging: stderr logging setup (text or JSON)
"""

__all__ = [
    "config",
    "logging",
]
