import os
import sys
import asyncio
import inspect

import pytest

# Ensure project root is on sys.path so `import app` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.obs.metrics import reset_metrics  # noqa: E402


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        # Filter only the parameters that the test function expects
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


@pytest.fixture(autouse=True)
def _fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


def make_segment(depart, arrive, origin=None, destination=None, **extra):
    seg = {"departureAt": depart, "arrivalAt": arrive}
    if origin is not None:
        seg["origin"] = origin
    if destination is not None:
        seg["destination"] = destination
    seg.update(extra)
    return seg


def make_offer(offer_id, amount, segments, currency="EUR", **extra):
    offer = {
        "id": offer_id,
        "price": {"amount": amount, "currency": currency},
        "trips": [{"segments": segments}],
    }
    offer.update(extra)
    return offer
