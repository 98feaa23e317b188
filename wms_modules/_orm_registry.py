"""
Module ORM Registry (``wms_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` contains its table definition before tables are
created.  ``create_all_tables()`` is the one entry point scripts, the
services layer and ``tests/conftest.py`` use to get a complete schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports sibling ``wms_modules`` packages
and ``wms_kernel.db.engine`` (allowed: modules -> kernel).
MUST NOT be imported by ``wms_kernel``.
"""


def import_all_orm_models() -> None:
    """Import every ``wms_modules.*.orm`` module (idempotent)."""
    import wms_modules.purchasing.orm  # noqa: F401
    import wms_modules.shipments.orm  # noqa: F401


def create_all_tables() -> None:
    """Register all module ORM models, then create every table."""
    from wms_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
