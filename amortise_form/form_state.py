"""Form state store.

``FormStore`` owns the live controls of one session. It reads them into typed
parameter values, writes typed values back to every control mirroring a
parameter, applies the cross-field defaulting rules and snapshots/restores the
controls against a key/value store. Whether a change should trigger a
recompute is not decided here; see :mod:`amortise_form.controller`.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Dict, Optional

from . import config
from .bindings import (
    Control,
    FieldBindingRegistry,
    coerce,
    mirror_field_to_slider,
    mirror_slider_to_field,
)
from .data_models import (
    ControlKind,
    FieldBinding,
    FormState,
    InterestMethod,
    InterestType,
    Param,
    ParamValue,
    PersistedSnapshot,
    Schedule,
    ScheduleRequest,
)
from .storage import Storage
from .utils import format_money, format_number, next_period_start, today

logger = logging.getLogger(__name__)


class FormStore:
    def __init__(
        self,
        storage: Storage,
        registry: Optional[FieldBindingRegistry] = None,
        clock: Callable[[], date] = today,
    ) -> None:
        self.registry = registry or FieldBindingRegistry()
        self.controls: Dict[str, Control] = self.registry.build_controls()
        self._storage = storage
        self._clock = clock

    # -- reading ---------------------------------------------------------

    def control(self, param: Param) -> Control:
        return self.controls[self.registry.binding(param).control_id]

    def read(self, param: Param) -> ParamValue:
        """Typed value of ``param``; raises ``ValidationError`` on bad input."""
        binding = self.registry.binding(param)
        return coerce(binding, self.controls[binding.control_id])

    def read_state(self) -> FormState:
        return {binding.param: self.read(binding.param) for binding in self.registry}

    # -- writing ---------------------------------------------------------

    def write(self, param: Param, value: ParamValue) -> None:
        """Write a typed value to the field and its slider, if any."""
        binding = self.registry.binding(param)
        control = self.controls[binding.control_id]
        if binding.kind is ControlKind.CHECKBOX:
            control.checked = bool(value)
            return
        if value is None:
            control.value = ""
        elif isinstance(value, date):
            control.value = value.isoformat()
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            control.value = format_number(value)
        else:
            control.value = str(value)
        mirror_field_to_slider(binding, self.controls)

    def set_raw(self, control_id: str, text: str) -> FieldBinding:
        """Set a control's raw text and mirror it onto the paired control.

        Raises ``KeyError`` for an unknown control id.
        """
        binding = self.registry.lookup(control_id)
        if binding is None:
            raise KeyError(control_id)
        self.controls[control_id].value = text
        if control_id == binding.slider_id:
            mirror_slider_to_field(binding, self.controls)
        else:
            mirror_field_to_slider(binding, self.controls)
        return binding

    # -- defaulting rules ------------------------------------------------

    def apply_defaults(self) -> None:
        """Re-seed every control with its computed default."""
        for control_id, raw in config.DEFAULT_CONTROL_VALUES.items():
            self.controls[control_id].load(raw)
        for binding in self.registry:
            mirror_field_to_slider(binding, self.controls)
        disbursal = self._clock()
        first_payment = next_period_start(disbursal)
        self.write(Param.DISBURSAL_DATE, disbursal)
        self.write(Param.FIRST_PAYMENT_DATE, first_payment)
        self.write(Param.FIRST_CAPITALISATION_DATE, first_payment)
        self.sync_linked_controls()

    def sync_linked_controls(self) -> None:
        """Re-apply enablement and every declared link after bulk changes."""
        for binding in self.registry:
            if binding.linked_to is None or binding.linked_while_off is None:
                continue
            custom = self.control(binding.linked_while_off).checked
            linked = self.controls[binding.control_id]
            linked.disabled = not custom
            if not custom:
                linked.value = self.control(binding.linked_to).value
        self.control(Param.FIXED_PAYMENT).disabled = not self.control(Param.USE_FIXED_PAYMENT).checked

    def follow_links(self, source: Param) -> None:
        """Copy ``source`` into every control linked to it whose override is off."""
        for binding in self.registry:
            if binding.linked_to is not source or binding.linked_while_off is None:
                continue
            if not self.control(binding.linked_while_off).checked:
                self.controls[binding.control_id].value = self.control(source).value

    def set_custom_capitalisation(self, enabled: bool) -> None:
        """Toggle the custom capitalisation date.

        Turning it on unlocks the date and keeps its current (mirrored) value;
        turning it off locks it and snaps it back to the first-payment date.
        """
        self.control(Param.CUSTOM_CAPITALISATION_DATE).checked = enabled
        self.sync_linked_controls()

    def set_fixed_payment_enabled(self, enabled: bool, last_schedule: Optional[Schedule]) -> None:
        self.control(Param.USE_FIXED_PAYMENT).checked = enabled
        fixed = self.control(Param.FIXED_PAYMENT)
        if not enabled:
            fixed.disabled = True
            fixed.value = ""
            return
        fixed.disabled = False
        if last_schedule is None:
            logger.debug("No schedule yet; fixed payment will be populated after the next computation")
            return
        self.populate_fixed_payment(last_schedule)

    def populate_fixed_payment(self, schedule: Schedule) -> bool:
        """Fill an empty, enabled fixed-payment field from the first row."""
        fixed = self.control(Param.FIXED_PAYMENT)
        if not self.control(Param.USE_FIXED_PAYMENT).checked or fixed.value.strip():
            return False
        if not schedule.payments:
            return False
        fixed.value = format_money(schedule.payments[0].payment)
        logger.debug("Populated fixed payment with %s", fixed.value)
        return True

    # -- request ---------------------------------------------------------

    def build_request(self) -> ScheduleRequest:
        """Shape the current controls into the engine's argument set.

        Raises ``ValidationError`` for the first control that cannot be
        coerced; no request is produced in that case.
        """
        disbursal = self.read(Param.DISBURSAL_DATE) or self._clock()
        first_payment = self.read(Param.FIRST_PAYMENT_DATE) or next_period_start(disbursal)
        first_capitalisation = first_payment
        if self.read(Param.CUSTOM_CAPITALISATION_DATE):
            first_capitalisation = self.read(Param.FIRST_CAPITALISATION_DATE) or first_payment

        fixed_payment = None
        if self.read(Param.USE_FIXED_PAYMENT):
            fixed_payment = _positive_or_none(self.read(Param.FIXED_PAYMENT))

        interest_type = self.read(Param.INTEREST_TYPE)
        return ScheduleRequest(
            principal=self.read(Param.PRINCIPAL),
            annual_rate=self.read(Param.ANNUAL_RATE) / 100,
            num_payments=self.read(Param.NUM_PAYMENTS),
            disbursal_date=disbursal,
            first_payment_date=first_payment,
            first_capitalisation_date=first_capitalisation,
            interest_method=InterestMethod(self.read(Param.INTEREST_METHOD)),
            interest_type=InterestType(interest_type) if interest_type else None,
            fixed_payment=fixed_payment,
            balloon_payment=_positive_or_none(self.read(Param.BALLOON_PAYMENT)),
            option_fee=_positive_or_none(self.read(Param.OPTION_FEE)),
        )

    # -- persistence -----------------------------------------------------

    def snapshot(self) -> PersistedSnapshot:
        return {control_id: control.raw() for control_id, control in self.controls.items()}

    def persist(self) -> None:
        """Write every control to the store; raises ``PersistenceError``."""
        for key, value in self.snapshot().items():
            self._storage.set(key, value)

    def restore(self) -> bool:
        """Load stored control values over the current ones.

        Returns True when at least one stored value was found.
        """
        found = False
        for control_id, control in self.controls.items():
            value = self._storage.get(control_id)
            if value is not None:
                control.load(value)
                found = True
        for binding in self.registry:
            mirror_field_to_slider(binding, self.controls)
        self.sync_linked_controls()
        return found

    def clear_persisted(self) -> None:
        self._storage.clear()


def _positive_or_none(value: ParamValue) -> Optional[float]:
    if value is None or value <= 0:
        return None
    return value
