"""
Shared Kernel Module
====================

Generic infrastructure used by the SLA engine and its HTTP surface:
structured logging and API middleware.

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
