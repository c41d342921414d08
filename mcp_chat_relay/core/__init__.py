"""Project core.

This package hosts the stable, non-domain-specific building blocks (errors,
transcript types and the transcript wire codec).
"""

from __future__ import annotations

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
