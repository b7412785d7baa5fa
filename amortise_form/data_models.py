"""Data models for the amortisation form.

This module defines the enums and dataclasses shared by the form pipeline:
the logical parameters and their control kinds, the field bindings that tie a
parameter to its controls, the request handed to the external engine and the
schedule it returns. Using dataclasses makes it easy to construct, inspect and
serialize these structures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


class Param(str, Enum):
    """Logical parameters collected by the form."""

    PRINCIPAL = "principal"
    ANNUAL_RATE = "annual_rate"
    NUM_PAYMENTS = "num_payments"
    BALLOON_PAYMENT = "balloon_payment"
    OPTION_FEE = "option_fee"
    DISBURSAL_DATE = "disbursal_date"
    FIRST_PAYMENT_DATE = "first_payment_date"
    FIRST_CAPITALISATION_DATE = "first_capitalisation_date"
    CUSTOM_CAPITALISATION_DATE = "custom_capitalisation_date"
    INTEREST_METHOD = "interest_method"
    INTEREST_TYPE = "interest_type"
    USE_FIXED_PAYMENT = "use_fixed_payment"
    FIXED_PAYMENT = "fixed_payment"


class ControlKind(str, Enum):
    NUMERIC_TEXT = "numeric-text"
    DATE = "date"
    CHECKBOX = "checkbox"
    SINGLE_SELECT = "single-select"
    RADIO_GROUP = "radio-group"
    SLIDER = "slider"


class EventKind(str, Enum):
    """Kinds of user interaction delivered to the controller.

    ``input`` is a keystroke in a free-entry field, ``blur`` its explicit
    commit. ``adjust`` and ``release`` model a slider drag and drop.
    """

    INPUT = "input"
    CHANGE = "change"
    BLUR = "blur"
    ADJUST = "adjust"
    RELEASE = "release"
    TOGGLE = "toggle"


class InterestMethod(str, Enum):
    CONVENTION_30_360 = "convention_30_360"
    ACTUAL_365 = "actual_365"
    ACTUAL_360 = "actual_360"
    ACTUAL_ACTUAL = "actual_actual"


class InterestType(str, Enum):
    SIMPLE = "simple"
    COMPOUND = "compound"


@dataclass(frozen=True)
class LinearScale:
    """Identity mapping between a slider position and the field value."""

    min: float
    max: float
    step: float = 1.0


@dataclass(frozen=True)
class LogScale:
    """Logarithmic mapping of a [0, 100] slider onto ``[min, max]``.

    Attributes
    ----------
    min, max: float
        Bounds of the underlying value; ``0 < min < max``.
    whole_units: bool
        When True, values read back from the slider are rounded to integers
        before being written to the field.
    """

    min: float
    max: float
    whole_units: bool = True


Scale = Union[LinearScale, LogScale]


@dataclass(frozen=True)
class FieldBinding:
    """Declares the control(s) that carry one logical parameter.

    Attributes
    ----------
    param: Param
        The logical parameter.
    control_id: str
        Identifier of the primary control; also the persistence key.
    kind: ControlKind
        Kind of the primary control.
    slider_id: Optional[str]
        Identifier of the paired slider, if any.
    scale: Optional[Scale]
        Scale shared by the field and its slider.
    linked_to: Optional[Param]
        Parameter this one mirrors while ``linked_while_off`` is unchecked.
    linked_while_off: Optional[Param]
        Checkbox parameter that, when checked, breaks the link.
    choices: Tuple[str, ...]
        Allowed values for single-select and radio-group controls.
    optional: bool
        Whether an empty control reads as ``None`` instead of failing.
    """

    param: Param
    control_id: str
    kind: ControlKind
    slider_id: Optional[str] = None
    scale: Optional[Scale] = None
    linked_to: Optional[Param] = None
    linked_while_off: Optional[Param] = None
    choices: Tuple[str, ...] = ()
    optional: bool = False


@dataclass(frozen=True)
class ControlEvent:
    control_id: str
    kind: EventKind
    value: Optional[str] = None


@dataclass(frozen=True)
class ScheduleRequest:
    """Immutable argument set for one engine call.

    ``annual_rate`` is a decimal fraction (``0.05`` for 5 %). Optional
    amounts are ``None`` when not present; balloon payment and option fee are
    only present when strictly positive.
    """

    principal: float
    annual_rate: float
    num_payments: int
    disbursal_date: date
    first_payment_date: date
    first_capitalisation_date: date
    interest_method: InterestMethod
    interest_type: Optional[InterestType] = None
    fixed_payment: Optional[float] = None
    balloon_payment: Optional[float] = None
    option_fee: Optional[float] = None

    def as_args(self) -> Tuple[Any, ...]:
        """Return the positional arguments in the order the engine expects."""
        return (
            self.principal,
            self.annual_rate,
            self.num_payments,
            self.disbursal_date.isoformat(),
            self.first_payment_date.isoformat(),
            self.first_capitalisation_date.isoformat(),
            self.interest_method.value,
            self.interest_type.value if self.interest_type is not None else None,
            self.fixed_payment,
            self.balloon_payment,
            self.option_fee,
        )


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PaymentRow:
    """One period of the amortisation schedule."""

    month: int
    payment: Decimal
    interest: Decimal
    principal: Decimal
    balance: Decimal

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PaymentRow":
        return cls(
            month=int(raw["month"]),
            payment=_to_decimal(raw["payment"]),
            interest=_to_decimal(raw["interest"]),
            principal=_to_decimal(raw["principal"]),
            balance=_to_decimal(raw["balance"]),
        )


@dataclass(frozen=True)
class ScheduleMeta:
    total_payable: Decimal
    total_interest: Decimal
    annual_rate: Decimal
    calculated_apr: Decimal

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ScheduleMeta":
        return cls(
            total_payable=_to_decimal(raw["total_payable"]),
            total_interest=_to_decimal(raw["total_interest"]),
            annual_rate=_to_decimal(raw["annual_rate"]),
            calculated_apr=_to_decimal(raw["calculated_apr"]),
        )


@dataclass(frozen=True)
class Schedule:
    """A complete schedule as produced by the engine.

    Rows are in chronological order. A schedule is never modified; the next
    successful computation replaces it wholesale.
    """

    payments: Tuple[PaymentRow, ...]
    meta: ScheduleMeta

    @classmethod
    def from_engine(cls, raw: Any) -> "Schedule":
        """Normalize an engine result into a ``Schedule``.

        Accepts a ``Schedule`` or the mapping shape
        ``{"payments": [...], "meta": {...}}``.
        """
        if isinstance(raw, Schedule):
            return raw
        if not isinstance(raw, Mapping):
            raise TypeError(f"Unsupported schedule type: {type(raw).__name__}")
        rows = tuple(
            row if isinstance(row, PaymentRow) else PaymentRow.from_mapping(row)
            for row in raw["payments"]
        )
        meta = raw["meta"]
        if not isinstance(meta, ScheduleMeta):
            meta = ScheduleMeta.from_mapping(meta)
        return cls(payments=rows, meta=meta)


# Typed value of one parameter: number, ISO date, boolean or enum string.
ParamValue = Union[float, int, date, bool, str, None]

FormState = Dict[Param, ParamValue]

PersistedSnapshot = Dict[str, str]


@dataclass
class ChartSeries:
    """One named series handed to the chart renderer."""

    name: str
    kind: str  # "line" or "bar"
    values: List[float]
    axis: str
    stack: Optional[str] = None


@dataclass
class ErrorBanner:
    visible: bool = False
    message: str = ""
    detail: str = ""


@dataclass
class SummaryView:
    monthly_payment: str = "0"
    total_payable: str = "0"
    total_interest: str = "0"
    annual_rate: str = "0"
    calculated_apr: str = "0"

    def as_dict(self) -> Dict[str, str]:
        return {
            "monthly_payment": self.monthly_payment,
            "total_payable": self.total_payable,
            "total_interest": self.total_interest,
            "annual_rate": self.annual_rate,
            "calculated_apr": self.calculated_apr,
        }


@dataclass
class TableView:
    rows: List[Tuple[str, str, str, str, str]] = field(default_factory=list)
