"""libdesk - Services Package

This package contains service modules for external integrations:
- Google Books catalog search
- HTTP client abstraction
"""
