"""
SLA Escalation Module
=====================

Bounded Context for help-desk SLA compliance and escalation.

Responsibilities:
- Classify ticket status (active, paused, terminal)
- Compute overdue state against priority targets
- Match escalation rules and fire each threshold at most once
- Notify, reassign, re-prioritise and annotate tickets
- Auto-close tickets left in Resolved past the grace period
- Report per-agent workload (team pulse)
- Run on a schedule, or on demand via POST /sla/engine/run
"""

__version__ = "1.0.0"
