"""Compliance checklists: recurring schedules, reminders and their dispatch.

The schedule calculator (``recurrence``) and the reminder state machine
(``reminder_states``) are pure; everything else wires them to the database,
the delivery channels, the Celery worker and the HTTP API.
"""
