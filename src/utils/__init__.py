"""
EzUpdate Utility Modules

Common utilities for durable file operations.
"""

from .atomic_write import (
    atomic_write_text,
    durable_append,
)

__all__ = [
    "atomic_write_text",
    "durable_append",
]
