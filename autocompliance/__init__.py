"""Compliance checklist scheduling and reminder dispatch service."""
