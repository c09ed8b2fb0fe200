"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: engine, session factory and session scope
- models: SQLAlchemy ORM models for the order aggregate and its collaborators

Submodules are imported explicitly where needed to avoid circular imports.
"""

__all__ = []
