"""Feedback learning: signals, preferences, temperature, global guidance, reactions."""
