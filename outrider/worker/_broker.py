"""Dramatiq broker selection for Outrider workers.

Actors call :func:`ensure_broker_configured` before doing any work. A Redis
broker is installed when ``OUTRIDER_BROKER_URL`` is set; test runs and
processes that opt in with ``OUTRIDER_ALLOW_STUB_BROKER`` get a
``StubBroker``.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

from outrider.common.env import read_str

BROKER_URL_ENV = "OUTRIDER_BROKER_URL"
ALLOW_STUB_ENV = "OUTRIDER_ALLOW_STUB_BROKER"

_BROKER_LOCK = threading.Lock()
_broker_configured = False


def _under_pytest() -> bool:
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def _stub_allowed() -> bool:
    flag = (read_str(ALLOW_STUB_ENV) or "").lower()
    return flag in {"1", "true", "yes"} or _under_pytest()


def build_broker() -> dramatiq.Broker:
    """Return the broker this process should use.

    Raises
    ------
    RuntimeError
        If no broker URL is configured and stub brokers are not allowed.

    """
    url = read_str(BROKER_URL_ENV)
    if url is not None:
        from dramatiq.brokers.redis import RedisBroker

        return RedisBroker(url=url)
    if _stub_allowed():
        return StubBroker()
    msg = (
        f"No Dramatiq broker configured. Set {BROKER_URL_ENV} to a Redis URL, "
        f"or {ALLOW_STUB_ENV}=1 for local runs."
    )
    raise RuntimeError(msg)


def ensure_broker_configured() -> None:
    """Install a broker once per process unless one is already set.

    Safe to call from several Dramatiq worker threads at once.
    """
    global _broker_configured  # noqa: PLW0603

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return
        try:
            current = dramatiq.get_broker()
        except (ImportError, LookupError):
            current = None
        if current is None:
            dramatiq.set_broker(build_broker())
        _broker_configured = True


__all__ = ["ensure_broker_configured"]
