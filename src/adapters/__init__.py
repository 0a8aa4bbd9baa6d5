"""Adapters layer for Lab-Verdict.

This module contains input/output adapters that interface with external systems.
Adapters implement Port interfaces defined in the domain layer and handle
data transformation from external formats to domain models.
"""
