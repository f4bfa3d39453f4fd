"""
Talent Workflows

A pluggable state-machine engine driving recruiting and back-office processes
(candidate lifecycle, job requisitions, timesheets, invoices) through
declarative definitions of states, guarded transitions and side-effecting
actions, with a hash-chained audit trail and SLA tracking.
"""

__version__ = "1.0.0"
