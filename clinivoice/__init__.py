"""
Clinivoice Backend: Application Package
========================================

Layers:
    ┌─────────────────────────────────────┐
    │      Routes (API Layer)             │  ← HTTP concerns, auth, status codes
    ├─────────────────────────────────────┤
    │      Services                       │  ← generation pipeline, entitlement gate
    ├─────────────────────────────────────┤
    │      Models & Schemas               │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │      Database                       │  ← async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
