"""
Authentication package for the Task Board client.

This package contains authentication-related functionality including
secure token storage, the login/register/refresh client, single-flight
token renewal and session state management.
"""
