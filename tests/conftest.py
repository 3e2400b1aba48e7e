# tests/conftest.py
import os

import pytest

pytest_plugins = ["tests.common.fixtures"]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    # Postgres tests only run against an explicitly configured database.
    if os.environ.get("DAGSMITH_PG_DSN"):
        return

    skip_pg = pytest.mark.skip(reason="DAGSMITH_PG_DSN not set")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)
