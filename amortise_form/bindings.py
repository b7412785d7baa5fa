"""Field binding registry.

Every logical parameter is declared once here together with the control(s)
that carry it: a primary control and, for wide-range amounts, a paired
slider. The registry is resolved once at startup so a missing or renamed
control fails immediately instead of on the first interaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from . import config
from .data_models import (
    ControlKind,
    FieldBinding,
    InterestMethod,
    InterestType,
    LinearScale,
    LogScale,
    Param,
    ParamValue,
)
from .errors import ValidationError
from .utils import (
    float_from_str,
    format_number,
    int_from_str,
    parse_iso_date,
    to_position,
    to_value,
)

INTEGER_PARAMS = frozenset({Param.NUM_PAYMENTS})

BINDINGS: Tuple[FieldBinding, ...] = (
    FieldBinding(
        Param.PRINCIPAL,
        "principal",
        ControlKind.NUMERIC_TEXT,
        slider_id="principal_slider",
        scale=LogScale(config.PRINCIPAL_BOUNDS["min"], config.PRINCIPAL_BOUNDS["max"]),
    ),
    FieldBinding(
        Param.ANNUAL_RATE,
        "annual_rate",
        ControlKind.NUMERIC_TEXT,
        slider_id="annual_rate_slider",
        scale=LinearScale(**config.ANNUAL_RATE_BOUNDS),
    ),
    FieldBinding(
        Param.NUM_PAYMENTS,
        "num_payments",
        ControlKind.NUMERIC_TEXT,
        slider_id="num_payments_slider",
        scale=LinearScale(**config.NUM_PAYMENTS_BOUNDS),
    ),
    FieldBinding(
        Param.BALLOON_PAYMENT,
        "balloon_payment",
        ControlKind.NUMERIC_TEXT,
        slider_id="balloon_payment_slider",
        scale=LinearScale(**config.BALLOON_PAYMENT_BOUNDS),
        optional=True,
    ),
    FieldBinding(Param.OPTION_FEE, "option_fee", ControlKind.NUMERIC_TEXT, optional=True),
    FieldBinding(Param.DISBURSAL_DATE, "disbursal_date", ControlKind.DATE, optional=True),
    FieldBinding(Param.FIRST_PAYMENT_DATE, "first_payment_date", ControlKind.DATE, optional=True),
    FieldBinding(
        Param.FIRST_CAPITALISATION_DATE,
        "first_capitalisation_date",
        ControlKind.DATE,
        linked_to=Param.FIRST_PAYMENT_DATE,
        linked_while_off=Param.CUSTOM_CAPITALISATION_DATE,
        optional=True,
    ),
    FieldBinding(Param.CUSTOM_CAPITALISATION_DATE, "cap_date_checkbox", ControlKind.CHECKBOX),
    FieldBinding(
        Param.INTEREST_METHOD,
        "interest_method",
        ControlKind.SINGLE_SELECT,
        choices=tuple(m.value for m in InterestMethod),
    ),
    FieldBinding(
        Param.INTEREST_TYPE,
        "interest_type",
        ControlKind.RADIO_GROUP,
        choices=tuple(t.value for t in InterestType),
        optional=True,
    ),
    FieldBinding(Param.USE_FIXED_PAYMENT, "use_fixed_payment", ControlKind.CHECKBOX),
    FieldBinding(Param.FIXED_PAYMENT, "fixed_payment", ControlKind.NUMERIC_TEXT, optional=True),
)


@dataclass
class Control:
    """Live state of one control: its raw text, checked and disabled flags."""

    control_id: str
    kind: ControlKind
    value: str = ""
    checked: bool = False
    disabled: bool = False

    def raw(self) -> str:
        """Persistable string form; checkboxes serialize as ``"true"``/``"false"``."""
        if self.kind is ControlKind.CHECKBOX:
            return "true" if self.checked else "false"
        return self.value

    def load(self, raw: str) -> None:
        if self.kind is ControlKind.CHECKBOX:
            self.checked = raw == "true"
        else:
            self.value = raw


class FieldBindingRegistry:
    """Static mapping of parameters to bindings and of control ids back to them."""

    def __init__(self, bindings: Tuple[FieldBinding, ...] = BINDINGS) -> None:
        self._by_param: Dict[Param, FieldBinding] = {}
        self._by_control: Dict[str, FieldBinding] = {}
        for binding in bindings:
            self._by_param[binding.param] = binding
            self._by_control[binding.control_id] = binding
            if binding.slider_id:
                self._by_control[binding.slider_id] = binding
        missing = [p.value for p in Param if p not in self._by_param]
        if missing:
            raise ValueError(f"No binding declared for: {', '.join(missing)}")

    def __iter__(self) -> Iterator[FieldBinding]:
        return iter(self._by_param.values())

    def binding(self, param: Param) -> FieldBinding:
        return self._by_param[param]

    def lookup(self, control_id: str) -> Optional[FieldBinding]:
        return self._by_control.get(control_id)

    def build_controls(self) -> Dict[str, Control]:
        controls: Dict[str, Control] = {}
        for binding in self:
            controls[binding.control_id] = Control(binding.control_id, binding.kind)
            if binding.slider_id:
                controls[binding.slider_id] = Control(binding.slider_id, ControlKind.SLIDER)
        return controls


def coerce(binding: FieldBinding, control: Control) -> ParamValue:
    """Read ``control`` as the typed value of ``binding``'s parameter.

    Raises
    ------
    ValidationError
        If the raw value cannot be coerced.
    """
    if binding.kind is ControlKind.CHECKBOX:
        return control.checked
    raw = control.value.strip()
    if not raw:
        if binding.optional:
            return None
        raise ValidationError(binding.param, "a value is required")
    try:
        if binding.kind is ControlKind.NUMERIC_TEXT:
            if binding.param in INTEGER_PARAMS:
                return int_from_str(raw)
            return float_from_str(raw)
        if binding.kind is ControlKind.DATE:
            return parse_iso_date(raw)
    except ValueError as exc:
        raise ValidationError(binding.param, str(exc)) from exc
    if raw not in binding.choices:
        raise ValidationError(binding.param, f"unknown option {raw!r}")
    return raw


def slider_position(binding: FieldBinding, value: float) -> str:
    """Slider text for a field value, clamped to the slider's range."""
    scale = binding.scale
    if isinstance(scale, LogScale):
        position = to_position(value, scale.min, scale.max) if value > 0 else 0.0
        return format_number(min(max(position, 0.0), 100.0))
    return format_number(min(max(value, scale.min), scale.max))


def slider_value(binding: FieldBinding, position: str) -> str:
    """Field text for a slider position, snapped to the scale's step."""
    scale = binding.scale
    pos = float_from_str(position)
    if isinstance(scale, LogScale):
        value = to_value(min(max(pos, 0.0), 100.0), scale.min, scale.max)
        if scale.whole_units:
            value = round(value)
        return format_number(value)
    value = min(max(pos, scale.min), scale.max)
    if scale.step:
        value = scale.min + round((value - scale.min) / scale.step) * scale.step
    if binding.param in INTEGER_PARAMS:
        value = round(value)
    return format_number(round(value, 10))


def mirror_field_to_slider(binding: FieldBinding, controls: Dict[str, Control]) -> None:
    """Move the paired slider to match the field; unparseable text leaves it alone."""
    if not binding.slider_id:
        return
    try:
        value = float_from_str(controls[binding.control_id].value)
    except ValueError:
        return
    controls[binding.slider_id].value = slider_position(binding, value)


def mirror_slider_to_field(binding: FieldBinding, controls: Dict[str, Control]) -> None:
    if not binding.slider_id:
        return
    try:
        text = slider_value(binding, controls[binding.slider_id].value)
    except ValueError as exc:
        raise ValidationError(binding.param, str(exc)) from exc
    controls[binding.control_id].value = text
