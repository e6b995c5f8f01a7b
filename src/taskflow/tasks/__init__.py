"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Comment, User, Notification, Tables)
- timestamps.py: normalization of store time values
- lifecycle.py: state machine, authorization and mutation operations
- sync.py: live subscriptions, authoritative tables, optimistic shadow
"""
