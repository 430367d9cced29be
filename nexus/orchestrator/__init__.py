"""Orchestration layer for Nexus agents.

Subpackages:
    agent: Turn engine, approval workflow, provider adapters and tools.
"""
