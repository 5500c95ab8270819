import asyncio
import inspect
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: run test in event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        loop = asyncio.new_event_loop()
        try:
            kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(pyfuncitem.obj(**kwargs))
        finally:
            loop.close()
        return True
    return None


@pytest.fixture
def image_row():
    def _make(record_id: int, created_at: str = "2025-03-01T10:00:00Z", **overrides):
        row = {
            "id": record_id,
            "user_id": "user-1",
            "image_url": f"https://example.supabase.co/storage/v1/object/public/images/{record_id}.jpg",
            "photo_date": None,
            "created_at": created_at,
            "metadata": None,
        }
        row.update(overrides)
        return row

    return _make
