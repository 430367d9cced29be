"""Nexus agent turn execution engine."""
