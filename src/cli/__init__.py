"""Command-line surface for the care-plan engine."""
