"""User identity store."""
