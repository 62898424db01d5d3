"""
Core package for shared utilities.

Configuration, structured logging and token validation used across the
marketplace backend.
"""
