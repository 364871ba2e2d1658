"""
Sensor Channels
===============

pH and ORP channels read a differential probe voltage from the shared ADC,
map it through their calibration, and smooth it with a recursive filter.
The RTD channel reads temperature from its own SPI device and is never
arbitrated.

Temperature for compensation is passed per call as `temp_c`: a value in °C
from an off-board source (usually the RTD), or None to read the onboard
temperature tap on the channel's own converter.
"""

import logging
from enum import Enum
from typing import Optional, Tuple

from .arbiter import AdcHandle, ChannelId, DeviceArbiter
from .calibration import (
    CalSlot,
    CalibrationPoint,
    CalibrationStore,
    orp_calibration,
    ph_calibration,
    temp_calibration,
)
from .conversions import DEFAULT_VREF, temp_from_voltage, voltage_from_sample
from .errors import DeviceNotHeld
from .hal import InputSelector, ResistanceTemperatureDevice, create_rtd
from .kalman import RecursiveFilter

logger = logging.getLogger(__name__)


class SharedAdcClient:
    """Client role on the arbitrated converter.

    Reads go through the handle obtained by `take`; once the handle is
    released (by this channel or by the coordinator) every read raises
    DeviceNotHeld.
    """

    name = "adc-client"

    def __init__(self, arbiter: DeviceArbiter, channel_id: ChannelId,
                 vref: float = DEFAULT_VREF):
        self.arbiter = arbiter
        self.channel_id = channel_id
        self.vref = vref
        self._handle: Optional[AdcHandle] = None

    def take(self) -> AdcHandle:
        """Acquire the shared converter for this channel."""
        self._handle = self.arbiter.acquire(self.channel_id)
        return self._handle

    def free(self):
        """Give the shared converter back; returns the raw bus."""
        bus = self.arbiter.release(self.channel_id)
        self._handle = None
        return bus

    @property
    def holds_device(self) -> bool:
        return self._handle is not None and self._handle.held

    def _sample(self, selector: InputSelector) -> int:
        if self._handle is None:
            raise DeviceNotHeld(f"{self.name} read {selector.value} without the ADC")
        return self._handle.read(selector)

    def _voltage(self, selector: InputSelector) -> float:
        return voltage_from_sample(self._sample(selector), self.vref)


class SensorChannel(SharedAdcClient):
    """One calibrated, filtered quantity read from the shared converter."""

    name = "sensor"
    jump_threshold = 1.0
    measurement_std = 1.0
    initial = 0.0

    def __init__(self, arbiter: DeviceArbiter, channel_id: ChannelId,
                 calibration: CalibrationStore, dt: float = 1.0,
                 vref: float = DEFAULT_VREF):
        super().__init__(arbiter, channel_id, vref)
        self.calibration = calibration
        self.filter = RecursiveFilter(dt, self.measurement_std, self.jump_threshold,
                                      initial=self.initial)

    # ----- Reads -----

    def read_voltage(self) -> float:
        """Probe voltage; useful for getting calibration data."""
        return self._voltage(InputSelector.DIFF_0_1)

    def read_temp(self) -> float:
        """Temperature from the onboard tap, in °C."""
        return temp_from_voltage(self._voltage(InputSelector.SINGLE_2))

    def _temperature(self, temp_c: Optional[float]) -> Optional[float]:
        if not self.calibration.temp_compensated:
            return None
        return self.read_temp() if temp_c is None else temp_c

    def read_raw(self, temp_c: Optional[float] = None) -> float:
        """Take a reading without the filter."""
        temp = self._temperature(temp_c)
        voltage = self.read_voltage()
        value = self.calibration.quantity(voltage, temp)
        logger.debug("%s: %.5f V -> %.4f (T=%s)", self.name, voltage, value, temp)
        return value

    def predict(self) -> None:
        """Advance the filter. Not generally used directly."""
        self.filter.predict()

    def update(self, temp_c: Optional[float] = None) -> bool:
        """Feed one raw reading to the filter. Not generally used directly."""
        return self.filter.update(self.read_raw(temp_c))

    def read(self, temp_c: Optional[float] = None) -> float:
        """Take a filtered reading."""
        self.predict()
        self.update(temp_c)
        return self.filter.value

    # ----- Calibration -----

    def calibrate(self, slot: CalSlot, quantity: float,
                  temp_c: Optional[float] = None) -> Tuple[float, Optional[float]]:
        """Capture a calibration point with the probe in a known solution.

        Returns:
            (voltage, temperature) used for the point; temperature is None on
            channels without temperature compensation
        """
        temp = self._temperature(temp_c)
        voltage = self.read_voltage()
        self.calibration.set(slot, CalibrationPoint(voltage, quantity, temp))
        return voltage, temp

    def calibrate_all(self, *points: Optional[CalibrationPoint]) -> None:
        self.calibration.set_all(*points)

    def reset_calibration(self) -> None:
        self.calibration.reset()


class PhChannel(SensorChannel):
    """pH probe; 2- or 3-point calibration with temperature compensation."""

    name = "ph"
    jump_threshold = 0.2
    measurement_std = 0.1
    initial = 7.0

    def __init__(self, arbiter: DeviceArbiter, dt: float = 1.0,
                 channel_id: ChannelId = ChannelId.PH, vref: float = DEFAULT_VREF):
        super().__init__(arbiter, channel_id, ph_calibration(), dt, vref)
        # Maps the A3 temperature-circuit voltage to °C.
        self.temp_calibration = temp_calibration()

    def read_temp_voltage(self) -> float:
        """Raw voltage of the RTD circuit wired to A3 of the pH converter."""
        return self._voltage(InputSelector.SINGLE_3)

    def read_circuit_temp(self) -> float:
        """Temperature of the A3 circuit, in °C, from its 2-point calibration."""
        return self.temp_calibration.quantity(self.read_temp_voltage())


class OrpChannel(SensorChannel):
    """ORP probe in mV; single-point calibration, no temperature compensation."""

    name = "orp"
    jump_threshold = 30.0
    measurement_std = 10.0
    initial = 0.0

    def __init__(self, arbiter: DeviceArbiter, dt: float = 1.0,
                 channel_id: ChannelId = ChannelId.ORP_EC, vref: float = DEFAULT_VREF):
        super().__init__(arbiter, channel_id, orp_calibration(), dt, vref)


class RtdType(Enum):
    """RTD element, with (nominal, reference resistor) in ohms."""

    PT100 = (100.0, 430.0)
    PT1000 = (1000.0, 4300.0)


class RtdWires(Enum):
    TWO = 2
    THREE = 3
    FOUR = 4


class RtdChannel:
    """Temperature from a MAX31865 on a dedicated SPI chip select."""

    name = "temperature"

    def __init__(self, device: ResistanceTemperatureDevice):
        self.device = device

    @classmethod
    def create(cls, spi, cs_pin, rtd_type: RtdType = RtdType.PT100,
               wires: RtdWires = RtdWires.THREE, mock: bool = False) -> "RtdChannel":
        nominal, ref = rtd_type.value
        return cls(create_rtd(spi, cs_pin, nominal, ref, wires.value, mock=mock))

    def read(self) -> float:
        """Measure temperature, in Celsius."""
        temp = self.device.read()
        logger.debug("rtd: %.2f °C", temp)
        return temp

    def calibrate(self, known_temp_c: float = 100.0) -> float:
        """Correct the reference resistor with the probe in boiling water
        (or another bath of known temperature).

        Returns:
            The corrected reference resistance in ohms
        """
        ref = self.device.calibrate(known_temp_c)
        logger.info("RTD reference resistor calibrated at %.1f °C: %.3f ohm", known_temp_c, ref)
        return ref
