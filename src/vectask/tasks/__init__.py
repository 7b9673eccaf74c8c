"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, RecurrenceRule) and codecs
- recurrence.py: next due date for recurring tasks
- dependency_check.py: dependency warnings, levels, cycle detection
- task_store.py: SQLite-backed backend data service
- task_state.py: optimistic in-memory store with follow-up sync/recurrence
"""
