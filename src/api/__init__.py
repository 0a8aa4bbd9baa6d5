"""HTTP API for Lab-Verdict.

This module provides a FastAPI backend for submitting results for validation,
evaluating values ad hoc against rule sets and managing critical-value
notifications.
"""

__version__ = "1.0.0"
