"""Patient health diary."""
