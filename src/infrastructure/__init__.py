"""
Infrastructure Layer
====================

Process-wide technical concerns: database engine and sessions.
"""
