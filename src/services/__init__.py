"""Workflow services: form engine, parsers, progress tracking and the state machine."""
