"""
Task Board client.

Async client for the Task Board service: authenticated API calls with silent
access token renewal, task operations and a local board model.
"""

__version__ = "1.0.0"
