"""
LoveCakes Backend — Application Package Initializer
====================================================

What: Marks the `app` directory as a Python package.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The backend is a thin HTTP layer over SQL Server stored procedures:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, envelopes
    ├─────────────────────────────────────┤
    │   Services (CRUD validation,        │  ← request validation,
    │   stored-procedure gateway)         │    procedure invocation
    ├─────────────────────────────────────┤
    │        Database (Pool)              │  ← lazily built async engine
    └─────────────────────────────────────┘

    Business rules live in the stored procedures themselves; the Python side
    binds parameters, runs the procedure and shapes the result sets.
"""

__version__ = "1.0.0"

SERVICE_NAME = "lovecakes-backend"
