# dagsmith/adapters/__init__.py
from __future__ import annotations

from dagsmith.adapters.base import AdapterConnection, Dialect, TargetAdapter
from dagsmith.adapters.duckdb import DUCKDB_DIALECT, DuckAdapter
from dagsmith.settings import Profile


def dialect_for(engine: str) -> Dialect:
    if engine == "duckdb":
        return DUCKDB_DIALECT
    if engine == "postgres":
        from dagsmith.adapters.postgres import POSTGRES_DIALECT  # noqa: PLC0415

        return POSTGRES_DIALECT
    raise RuntimeError(f"Unknown engine type: {engine}")


def make_adapter(prof: Profile, *, jobs: int = 1) -> TargetAdapter:
    """Instantiate the target adapter described by a resolved profile."""
    if prof.engine == "duckdb":
        return DuckAdapter(db_path=prof.duckdb.path, schema=prof.target_schema)

    if prof.engine == "postgres":
        # Imported lazily: SQLAlchemy + driver only needed for Postgres targets.
        from dagsmith.adapters.postgres import PostgresAdapter  # noqa: PLC0415

        if prof.postgres.dsn is None:
            raise RuntimeError("Postgres DSN must be set")
        return PostgresAdapter(
            dsn=prof.postgres.dsn, schema=prof.target_schema, pool_size=max(5, jobs)
        )

    raise RuntimeError(f"Unknown engine type: {getattr(prof, 'engine', None)}")


__all__ = [
    "AdapterConnection",
    "Dialect",
    "DuckAdapter",
    "TargetAdapter",
    "dialect_for",
    "make_adapter",
]
