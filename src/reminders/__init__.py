"""Reminder derivation, storage and channel resolution."""
