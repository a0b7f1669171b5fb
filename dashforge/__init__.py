"""
DashForge Backend Package.

FastAPI service for versioned dashboard specifications: guarded JSON patch
editing with simulation, optimistic-concurrency commits and rollback,
AI-proposed edits, and validated rule-based insights over dashboard data.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, errors, rate limiting and dependencies
    - models: Pydantic schemas and enums
    - services: Patch engine, version store, simulation and insight services
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
