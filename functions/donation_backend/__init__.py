"""
Backend package for the donation app.

This package provides the FastAPI application, the role authorizer and the
notification dispatcher, along with store/push/identity/storage abstractions
that can run against Firebase or fully in memory.
"""
