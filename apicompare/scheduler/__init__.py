"""Scheduler module - per-checkpoint fixture data and the comparison loop."""
