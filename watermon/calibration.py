"""
Calibration Storage and Models
==============================

Holds the 1-3 calibration points of a channel and turns them into the
conversion model the points define: a line (2 points), a Lagrange quadratic
(3 points) or a ratio through the origin (1 point).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Union

from .conversions import lagrange, linear_from_points, ph_temp_slope, ratio_from_point
from .errors import CalibrationUnset, InvalidCalibration

logger = logging.getLogger(__name__)


class CalSlot(Enum):
    """Calibration slot identity; recalibrating a slot overwrites it."""

    ONE = 1
    TWO = 2
    THREE = 3


@dataclass(frozen=True)
class CalibrationPoint:
    """A captured (voltage, quantity) pair.

    `temperature` is the solution temperature in °C at capture time, used by
    temperature-compensated channels only.
    """

    voltage: float
    quantity: float
    temperature: Optional[float] = None

    def as_tuple(self):
        return (self.voltage, self.quantity)


def _slope_offset(temp_c, cal_temp_c, compensated):
    if not compensated or temp_c is None or cal_temp_c is None:
        return 0.0
    return ph_temp_slope(temp_c, cal_temp_c)


class LinearModel:
    """Two-point line, optionally with a temperature-dependent slope."""

    def __init__(self, pt0: CalibrationPoint, pt1: CalibrationPoint,
                 temp_compensated: bool = False):
        if pt0.voltage == pt1.voltage:
            raise InvalidCalibration(
                f"Calibration points share voltage {pt0.voltage}V; slope undefined")
        self.pt0 = pt0
        self.pt1 = pt1
        self.temp_compensated = temp_compensated

    def quantity(self, voltage: float, temp_c: Optional[float] = None) -> float:
        offset = _slope_offset(temp_c, self.pt0.temperature, self.temp_compensated)
        return linear_from_points(voltage, self.pt0.as_tuple(), self.pt1.as_tuple(), offset)


class QuadraticModel:
    """Three-point Lagrange polynomial; compensates for slight nonlinearity."""

    def __init__(self, pt0: CalibrationPoint, pt1: CalibrationPoint, pt2: CalibrationPoint,
                 temp_compensated: bool = False):
        voltages = {pt0.voltage, pt1.voltage, pt2.voltage}
        if len(voltages) != 3:
            raise InvalidCalibration("Calibration points must have distinct voltages")
        self.points = (pt0, pt1, pt2)
        self.temp_compensated = temp_compensated

    def quantity(self, voltage: float, temp_c: Optional[float] = None) -> float:
        result = lagrange([p.as_tuple() for p in self.points], voltage)
        offset = _slope_offset(temp_c, self.points[0].temperature, self.temp_compensated)
        return result + offset * voltage


class RatioModel:
    """Line through the origin and a single calibration point."""

    def __init__(self, pt: CalibrationPoint):
        if pt.voltage == 0:
            raise InvalidCalibration("Single-point calibration needs a non-zero voltage")
        self.pt = pt

    def quantity(self, voltage: float, temp_c: Optional[float] = None) -> float:
        return ratio_from_point(voltage, self.pt.as_tuple())


Model = Union[LinearModel, QuadraticModel, RatioModel]


class CalibrationStore:
    """Per-channel calibration slots.

    Args:
        defaults: Factory points, in slot order
        required: Number of leading slots that must be populated (1 or 2)
        slots: Number of usable slots
        temp_compensated: Whether models apply the pH temperature term
    """

    def __init__(self, defaults: Sequence[CalibrationPoint], required: int = 2,
                 slots: int = 3, temp_compensated: bool = False):
        if not 1 <= required <= slots <= 3:
            raise ValueError(f"Invalid slot layout: required={required}, slots={slots}")
        self.defaults = tuple(defaults)
        self.required = required
        self.usable = tuple(CalSlot)[:slots]
        self.temp_compensated = temp_compensated
        self._points: Dict[CalSlot, CalibrationPoint] = {}
        self._model: Optional[Model] = None
        self.reset()

    @property
    def points(self) -> Dict[CalSlot, CalibrationPoint]:
        return dict(self._points)

    def get(self, slot: CalSlot) -> Optional[CalibrationPoint]:
        return self._points.get(slot)

    def set(self, slot: CalSlot, point: CalibrationPoint) -> None:
        if slot not in self.usable:
            raise ValueError(f"Slot {slot.name} not available on this channel")
        self._points[slot] = point
        self._model = None
        logger.info("Calibration slot %s set to %s", slot.name, point)

    def set_all(self, *points: Optional[CalibrationPoint]) -> None:
        """Replace every slot; trailing None leaves optional slots empty."""
        if len(points) > len(self.usable):
            raise ValueError(f"At most {len(self.usable)} calibration points allowed")
        self._points = {
            slot: point for slot, point in zip(self.usable, points) if point is not None
        }
        self._model = None
        logger.info("Calibration replaced: %s", self._points)

    def reset(self) -> None:
        self.set_all(*self.defaults)

    def model(self) -> Model:
        if self._model is None:
            self._model = self._build()
        return self._model

    def quantity(self, voltage: float, temp_c: Optional[float] = None) -> float:
        return self.model().quantity(voltage, temp_c)

    def _build(self) -> Model:
        missing = [s.name for s in self.usable[:self.required] if s not in self._points]
        if missing:
            raise CalibrationUnset(f"Calibration slots not set: {', '.join(missing)}")

        p = self._points
        if self.required == 1:
            return RatioModel(p[CalSlot.ONE])
        if CalSlot.THREE in p:
            return QuadraticModel(p[CalSlot.ONE], p[CalSlot.TWO], p[CalSlot.THREE],
                                  self.temp_compensated)
        return LinearModel(p[CalSlot.ONE], p[CalSlot.TWO], self.temp_compensated)


PH_DEFAULTS = (
    CalibrationPoint(0.0, 7.0, 25.0),
    CalibrationPoint(0.17, 4.0, 25.0),
)

ORP_DEFAULTS = (CalibrationPoint(0.4, 400.0),)

# Voltage of the A3 temperature circuit at 0°C and 85°C.
TEMP_DEFAULTS = (
    CalibrationPoint(0.135, 0.0),
    CalibrationPoint(0.96, 85.0),
)


def ph_calibration() -> CalibrationStore:
    return CalibrationStore(PH_DEFAULTS, required=2, slots=3, temp_compensated=True)


def orp_calibration() -> CalibrationStore:
    return CalibrationStore(ORP_DEFAULTS, required=1, slots=1)


def temp_calibration() -> CalibrationStore:
    return CalibrationStore(TEMP_DEFAULTS, required=2, slots=2)
