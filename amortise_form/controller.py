"""Recalculation controller.

The controller turns control events into form updates and decides when a
change commits and must trigger a recompute:

* date, select and radio controls commit on every ``change``;
* free-entry numeric fields commit on ``blur`` only, so an incomplete number
  typed halfway is never sent to the engine;
* a slider commits on ``release``, and only if at least one ``adjust`` was
  seen since the previous release.

Recomputes are serialized with a latest-wins discipline. A trigger that
arrives while a pass is waiting on the engine marks the session pending; the
running pass then abandons its request and starts over from the current
form, so at most one engine call is ever in flight and an older request can
never render over views cleared for a newer one.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Callable, Dict, Optional

from . import config
from .bindings import FieldBindingRegistry
from .data_models import ControlEvent, ControlKind, EventKind, FieldBinding, Param
from .engine import EngineAdapter
from .errors import EngineError, PersistenceError, ValidationError
from .form_state import FormStore
from .presenter import TABLE_COLUMNS, ChartRenderer, SchedulePresenter
from .session import InputMode, RecalcState, SessionState
from .storage import Storage
from .utils import today

logger = logging.getLogger(__name__)

_COMMIT_ON_CHANGE = (ControlKind.DATE, ControlKind.SINGLE_SELECT, ControlKind.RADIO_GROUP)


class RecalculationController:
    def __init__(
        self,
        engine: Any,
        storage: Storage,
        *,
        renderer: Optional[ChartRenderer] = None,
        registry: Optional[FieldBindingRegistry] = None,
        clock: Callable[[], date] = today,
    ) -> None:
        self.session = SessionState()
        self.form = FormStore(storage, registry, clock)
        self.presenter = SchedulePresenter(self.session, renderer)
        self._engine = engine if isinstance(engine, EngineAdapter) else EngineAdapter(engine)

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> Optional[RecalcState]:
        """Seed the form from defaults and the persisted snapshot, then compute."""
        self.form.apply_defaults()
        try:
            if self.form.restore():
                logger.debug("Restored persisted snapshot")
        except PersistenceError as exc:
            logger.warning("Continuing without persisted snapshot: %s", exc)
        self._update_explanation()
        return await self.recompute()

    async def reset(self) -> Optional[RecalcState]:
        """Clear the persisted snapshot, restore defaults and recompute once."""
        try:
            self.form.clear_persisted()
        except PersistenceError as exc:
            logger.warning("Could not clear persisted snapshot: %s", exc)
        self.form.apply_defaults()
        self.session.input_modes.clear()
        self._update_explanation()
        return await self.recompute()

    # -- events ----------------------------------------------------------

    async def dispatch(self, event: ControlEvent) -> bool:
        """Apply one control event; return True when it triggered a recompute."""
        binding = self.form.registry.lookup(event.control_id)
        if binding is None:
            raise ValidationError(None, f"Unknown control: {event.control_id!r}")
        logger.debug("Event %s on %s", event.kind.value, event.control_id)

        if event.control_id == binding.slider_id:
            return await self._slider_event(binding, event)

        control = self.form.controls[binding.control_id]
        # A disabled text field may still lose focus; nothing else reaches it.
        if control.disabled and not (
            binding.kind is ControlKind.NUMERIC_TEXT and event.kind is EventKind.BLUR
        ):
            raise ValidationError(binding.param, "control is not editable")

        if binding.kind is ControlKind.CHECKBOX:
            return await self._checkbox_event(binding, event)
        if binding.kind is ControlKind.NUMERIC_TEXT:
            return await self._text_event(binding, event)
        if binding.kind in _COMMIT_ON_CHANGE:
            if event.value is not None:
                self.form.set_raw(binding.control_id, event.value)
            if event.kind is not EventKind.CHANGE:
                return False
            self.form.follow_links(binding.param)
            if binding.param is Param.INTEREST_METHOD:
                self._update_explanation()
            await self.recompute()
            return True
        return False

    async def _slider_event(self, binding: FieldBinding, event: ControlEvent) -> bool:
        modes = self.session.input_modes
        if event.kind is EventKind.ADJUST:
            if event.value is not None:
                self.form.set_raw(event.control_id, event.value)
            modes[event.control_id] = InputMode.DRAGGING
            return False
        if event.kind is not EventKind.RELEASE:
            return False
        if event.value is not None:
            self.form.set_raw(event.control_id, event.value)
        if self.session.input_mode(event.control_id) is not InputMode.DRAGGING:
            return False
        modes[event.control_id] = InputMode.IDLE
        await self.recompute()
        return True

    async def _text_event(self, binding: FieldBinding, event: ControlEvent) -> bool:
        if event.value is not None and not self.form.controls[binding.control_id].disabled:
            self.form.set_raw(binding.control_id, event.value)
        if event.kind is not EventKind.BLUR:
            return False
        if binding.param is Param.FIXED_PAYMENT and not self.form.read(Param.USE_FIXED_PAYMENT):
            return False
        await self.recompute()
        return True

    async def _checkbox_event(self, binding: FieldBinding, event: ControlEvent) -> bool:
        if event.kind not in (EventKind.TOGGLE, EventKind.CHANGE):
            return False
        control = self.form.controls[binding.control_id]
        enabled = event.value == "true" if event.value is not None else not control.checked
        if binding.param is Param.CUSTOM_CAPITALISATION_DATE:
            self.form.set_custom_capitalisation(enabled)
            self._persist()
            return False
        self.form.set_fixed_payment_enabled(enabled, self.session.schedule)
        await self.recompute()
        return True

    # -- recompute -------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self.session.status is RecalcState.COMPUTING

    async def recompute(self) -> Optional[RecalcState]:
        """Run one recompute pass, or mark one pending if a pass is running.

        Returns the outcome (``RENDERED`` or ``FAILED``), or ``None`` when the
        trigger was folded into the pass already in flight.
        """
        session = self.session
        if self.busy:
            logger.debug("Recompute requested while computing; marking pending")
            session.pending = True
            return None
        try:
            while True:
                session.pending = False
                session.status = RecalcState.COMPUTING
                self.presenter.clear()
                session.field_errors = {}
                try:
                    request = self.form.build_request()
                except ValidationError as exc:
                    session.field_errors[exc.param] = exc.message
                    session.outcome = RecalcState.FAILED
                    logger.debug("Request not built: %s", exc)
                    break
                try:
                    await self._engine.ensure_ready()
                    if session.pending:
                        logger.debug("Request superseded before the engine call")
                        continue
                    session.engine_calls += 1
                    schedule = self._engine.compute(request)
                except EngineError as exc:
                    if session.pending:
                        continue
                    session.outcome = RecalcState.FAILED
                    self.presenter.show_error(exc)
                    logger.info("Recompute failed: %s", exc.message)
                    break
                session.schedule = schedule
                self.presenter.render(schedule)
                session.outcome = RecalcState.RENDERED
                self.form.populate_fixed_payment(schedule)
                self._persist()
                logger.info("Recompute rendered %d payments", len(schedule.payments))
                if not session.pending:
                    break
        finally:
            session.status = RecalcState.IDLE
        return session.outcome

    # -- helpers ---------------------------------------------------------

    def _persist(self) -> None:
        try:
            self.form.persist()
        except PersistenceError as exc:
            logger.warning("Snapshot not saved: %s", exc)

    def _update_explanation(self) -> None:
        method = self.form.control(Param.INTEREST_METHOD).value
        self.session.explanation = config.INTEREST_METHOD_EXPLANATIONS.get(method, "")

    def view_state(self) -> Dict[str, Any]:
        """JSON-ready rendering of the controls and every schedule view."""
        session = self.session
        chart_json = session.chart.to_json() if session.chart is not None else None
        return {
            "status": session.status.value,
            "outcome": session.outcome.value if session.outcome is not None else None,
            "controls": {
                control_id: {
                    "value": control.value,
                    "checked": control.checked,
                    "disabled": control.disabled,
                }
                for control_id, control in self.form.controls.items()
            },
            "table": {"columns": list(TABLE_COLUMNS), "rows": [list(r) for r in session.table.rows]},
            "summary": session.summary.as_dict(),
            "chart": json.loads(chart_json) if chart_json else None,
            "error": {
                "visible": session.error.visible,
                "message": session.error.message,
                "detail": session.error.detail,
            },
            "field_errors": {param.value: message for param, message in session.field_errors.items()},
            "explanation": session.explanation,
        }
