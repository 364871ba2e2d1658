"""
Water Monitor Measurement Core
==============================

Turns raw ADS1115 samples from the pH, ORP, RTD and EC channels of a
multi-sensor water-quality instrument into calibrated, temperature
compensated and filtered readings, while the pH and ORP/EC converters
share one I2C bus.
"""

from .errors import (
    WaterMonitorError,
    TransportError,
    DeviceNotHeld,
    OwnershipConflict,
    GainLimitReached,
    CalibrationUnset,
    InvalidCalibration,
    SignalOutOfRange,
)
from .conversions import (
    voltage_from_sample,
    temp_from_voltage,
    lagrange,
    compensate_temperature,
    ec_from_voltages,
)
from .calibration import CalSlot, CalibrationPoint, CalibrationStore
from .kalman import RecursiveFilter
from .arbiter import ChannelId, DeviceArbiter, AdcHandle
from .channels import PhChannel, OrpChannel, RtdChannel, RtdType, RtdWires
from .ec import EcChannel, EcGain, EcState
from .monitor import WaterMonitor, Readings, ChannelResult, PinMap
from .config import Settings, load_settings

__version__ = "0.1.0"

__all__ = [
    # Errors
    "WaterMonitorError",
    "TransportError",
    "DeviceNotHeld",
    "OwnershipConflict",
    "GainLimitReached",
    "CalibrationUnset",
    "InvalidCalibration",
    "SignalOutOfRange",

    # Pure conversion functions
    "voltage_from_sample",
    "temp_from_voltage",
    "lagrange",
    "compensate_temperature",
    "ec_from_voltages",

    # Calibration and filtering
    "CalSlot",
    "CalibrationPoint",
    "CalibrationStore",
    "RecursiveFilter",

    # Shared ADC ownership
    "ChannelId",
    "DeviceArbiter",
    "AdcHandle",

    # Channels
    "PhChannel",
    "OrpChannel",
    "RtdChannel",
    "RtdType",
    "RtdWires",
    "EcChannel",
    "EcGain",
    "EcState",

    # Coordinator
    "WaterMonitor",
    "Readings",
    "ChannelResult",
    "PinMap",
    "Settings",
    "load_settings",
]
