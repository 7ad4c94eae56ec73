"""Core agent infrastructure."""
