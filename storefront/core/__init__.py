"""
Core package for shared utilities.

Configuration, structured logging and the money value object used across
the models and services.
"""
