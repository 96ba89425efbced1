"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, ScoreMessage)
- task_store.py: SQLite-backed storage + claim/query helpers
- lifecycle.py: state transitions (activate, claim, report outcome)
- reclaimer.py: releases in_flight tasks whose processor went away
- task_processor.py: fetch -> publish -> report for one claimed task
- task_scheduler.py: adaptive polling scheduler with a bounded worker pool
- task_api.py: activation boundary used by the console
"""
