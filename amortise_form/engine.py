"""Adapter around the external amortisation engine.

The engine itself lives outside this package. It is any object (module,
instance or class) exposing ``compute(principal, annual_rate, num_payments,
disbursal_date, first_payment_date, first_capitalisation_date,
interest_method, interest_type, fixed_payment, balloon_payment, option_fee)``
and, optionally, a ``ready()`` handshake that may be a coroutine. The adapter
runs the handshake once, normalizes results into :class:`Schedule` and turns
every engine failure into :class:`EngineError`.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
import traceback
from typing import Any, Optional

from .data_models import Schedule, ScheduleRequest
from .errors import EngineError

logger = logging.getLogger(__name__)


def load_engine(path: str) -> Any:
    """Import an engine from a ``module:attribute`` path.

    A class is instantiated without arguments; any other object is returned
    as-is. A bare module path returns the module.
    """
    module_name, _, attribute = path.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for part in filter(None, attribute.split(".")):
            target = getattr(target, part)
    except (ImportError, AttributeError) as exc:
        raise EngineError(f"Cannot load engine {path!r}", detail=str(exc)) from exc
    if inspect.isclass(target):
        target = target()
    if not callable(getattr(target, "compute", None)):
        raise EngineError(f"Engine {path!r} has no compute()")
    return target


class EngineAdapter:
    def __init__(self, engine: Any) -> None:
        self._engine = engine
        self._ready_task: Optional[asyncio.Future] = None
        self._is_ready = False

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    async def ensure_ready(self) -> None:
        """Await the engine's one-shot readiness handshake.

        Concurrent callers share the same pending handshake. A failed
        handshake is forgotten so the next call tries again.
        """
        if self._is_ready:
            return
        if self._ready_task is None:
            self._ready_task = asyncio.ensure_future(self._run_ready())
        try:
            await asyncio.shield(self._ready_task)
        except EngineError:
            self._ready_task = None
            raise
        self._is_ready = True

    async def _run_ready(self) -> None:
        ready = getattr(self._engine, "ready", None)
        if ready is None:
            return
        try:
            result = ready()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            raise EngineError(f"Engine failed to initialise: {exc}", detail=traceback.format_exc()) from exc
        logger.debug("Engine ready")

    def compute(self, request: ScheduleRequest) -> Schedule:
        try:
            raw = self._engine.compute(*request.as_args())
            return Schedule.from_engine(raw)
        except Exception as exc:
            raise EngineError(str(exc) or type(exc).__name__, detail=traceback.format_exc()) from exc
