"""
last-run - Persist a monotonic "last run" timestamp between workflow runs.

Stores a single UTC timestamp as a build artifact and retrieves the most
recent valid value on the next invocation.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
