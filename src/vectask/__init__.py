"""
vectask: task engine with optimistic state, dependency analysis,
recurrence and best-effort calendar synchronization.
"""

__version__ = "0.1.0"
