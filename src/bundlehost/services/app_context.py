# src/bundlehost/services/app_context.py
from __future__ import annotations
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

from bundlehost.adapters.fs.path_provider import PathProvider
from bundlehost.ports import EventBus
from bundlehost.services.settings import Settings

_CTX: ContextVar[Optional["AppContext"]] = ContextVar("bundlehost_app_ctx", default=None)


@dataclass(slots=True)
class AppContext:
    settings: Settings
    paths: PathProvider
    bus: EventBus
    logger: logging.Logger


def set_ctx(ctx: AppContext) -> None:
    """Publishes the current AppContext (available through get_ctx)."""
    _CTX.set(ctx)


def get_ctx() -> AppContext:
    """Current AppContext; raises if the application was not bootstrapped."""
    ctx = _CTX.get()
    if ctx is None:
        raise RuntimeError("AppContext is not initialized. Call init_ctx(...) during app bootstrap.")
    return ctx


def clear_ctx() -> None:
    _CTX.set(None)


@contextmanager
def use_ctx(ctx: AppContext):
    """Temporarily swaps the context (handy in tests)."""
    token = _CTX.set(ctx)
    try:
        yield ctx
    finally:
        _CTX.reset(token)
