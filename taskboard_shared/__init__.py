"""
Shared components for the Task Board client.

This package contains the data models, exception hierarchy, interfaces and
logging configuration used by the client and its command line.
"""
