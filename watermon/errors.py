"""
Error Types for the Water Monitor
=================================

Every failure the measurement core can raise derives from WaterMonitorError.
Transport errors come from the bus collaborators; the rest are contract
violations by the caller.
"""


class WaterMonitorError(Exception):
    """Base class for all water monitor errors."""


class TransportError(WaterMonitorError):
    """A bus transaction (I2C/SPI) failed in a hardware collaborator."""


class DeviceNotHeld(WaterMonitorError):
    """A read was attempted by a channel that does not hold the shared ADC."""


class OwnershipConflict(WaterMonitorError):
    """The shared ADC was requested while another channel holds it."""


class GainLimitReached(WaterMonitorError):
    """The EC gain ladder was stepped past its top or bottom rung."""


class CalibrationUnset(WaterMonitorError):
    """A quantity was requested before the mandatory calibration slots were set."""


class InvalidCalibration(WaterMonitorError, ValueError):
    """Calibration points do not define a usable model (e.g. equal voltages)."""


class SignalOutOfRange(WaterMonitorError):
    """The EC cell gave no usable signal, even on the lowest gain rung."""
