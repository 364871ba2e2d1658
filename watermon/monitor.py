"""
Water Monitor Coordinator
=========================

Owns every channel and moves the shared ADC between the pH side (0x48)
and the ORP/EC side (0x49). The pH side holds the converter between
operations. A composite reading keeps each field independent: a bus error
on one channel is recorded in that field and never hides the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from .arbiter import ChannelId, DeviceArbiter
from .calibration import CalSlot, CalibrationPoint
from .channels import OrpChannel, PhChannel, RtdChannel
from .config import Settings, load_settings
from .conversions import validate_sensor_range
from .ec import EcChannel
from .errors import SignalOutOfRange, TransportError, WaterMonitorError
from .hal import (
    create_dac,
    create_delay,
    create_i2c_bus,
    create_pulse_output,
    create_rtd,
    create_select_line,
    create_spi_bus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PinMap:
    """Board pins for the EC circuit and the RTD (Raspberry Pi defaults)."""

    rtd_cs: str = "D5"
    dac_cs: str = "D6"
    gain_select: Sequence[str] = ("D17", "D27", "D22")
    pwm: Sequence[str] = ("D12", "D13", "D18")
    # 50%, then ~17% twice
    pwm_duty: Sequence[int] = (0x8000, 0x2AAA, 0x2AAA)
    pwm_frequency: int = 94


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of one channel's read: a value or the transport error."""

    value: Optional[float] = None
    error: Optional[WaterMonitorError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> float:
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def capture(cls, read: Callable[..., float], *args) -> "ChannelResult":
        """Run `read`; bus errors and out-of-range signals become the result.

        Contract violations (ownership, calibration) still raise.
        """
        try:
            return cls(value=read(*args))
        except (TransportError, SignalOutOfRange) as e:
            return cls(error=e)


@dataclass(frozen=True)
class Readings:
    ph: ChannelResult
    temperature: ChannelResult
    ec: ChannelResult
    orp: ChannelResult
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def as_dict(self) -> dict:
        """Flat record; failed fields are None."""
        return {
            "timestamp": self.timestamp,
            "ph": self.ph.value,
            "temp_c": self.temperature.value,
            "ec": self.ec.value,
            "orp": self.orp.value,
        }


class WaterMonitor:
    """Top-level owner of the pH, ORP, EC and RTD channels."""

    def __init__(self, arbiter: DeviceArbiter, ph: PhChannel, orp: OrpChannel,
                 ec: EcChannel, rtd: RtdChannel, fallback_temp_c: float = 20.0):
        self.arbiter = arbiter
        self.ph = ph
        self.orp = orp
        self.ec = ec
        self.rtd = rtd
        self.fallback_temp_c = fallback_temp_c
        # Assume the pH side has the bus by default.
        self._ph_take()

    @classmethod
    def create(cls, settings: Optional[Settings] = None, pins: PinMap = PinMap(),
               mock: bool = False) -> "WaterMonitor":
        """Build a monitor with real (or mock) collaborators."""
        s = settings or load_settings()
        mock = mock or s.mock

        i2c = create_i2c_bus(mock=mock, vref=s.vref)
        spi = create_spi_bus(mock=mock)
        arbiter = DeviceArbiter(i2c, {ChannelId.PH: s.ph_address,
                                      ChannelId.ORP_EC: s.orp_ec_address})
        delay = create_delay(mock=mock)

        ph = PhChannel(arbiter, s.dt, vref=s.vref)
        orp = OrpChannel(arbiter, s.dt, vref=s.vref)
        ec = EcChannel(
            arbiter,
            create_dac(spi, pins.dac_cs, mock=mock),
            [create_select_line(p, mock=mock) for p in pins.gain_select],
            [create_pulse_output(p, pins.pwm_frequency, duty, mock=mock)
             for p, duty in zip(pins.pwm, pins.pwm_duty)],
            delay,
            dt=s.dt,
            vref=s.vref,
            cell_constant=s.ec_cell_constant,
            target_voltage=s.ec_target_voltage,
            settle_ms=s.ec_settle_ms,
        )
        rtd = RtdChannel(create_rtd(spi, pins.rtd_cs, s.rtd_nominal, s.rtd_ref_resistor,
                                    s.rtd_wires, mock=mock))
        return cls(arbiter, ph, orp, ec, rtd, s.fallback_temp_c)

    # ----- Ownership handoff -----

    def _ph_take(self) -> None:
        if not self.arbiter.is_held_by(ChannelId.PH):
            self.arbiter.handoff(ChannelId.PH)
        self.ph.take()

    def _orp_ec_take(self) -> None:
        if not self.arbiter.is_held_by(ChannelId.ORP_EC):
            self.arbiter.handoff(ChannelId.ORP_EC)
        self.orp.take()
        self.ec.take()

    # ----- Public API -----

    def _read_ph_at(self, temp_c: float) -> float:
        self._ph_take()
        return self.ph.read(temp_c)

    def _read_ec_at(self, temp_c: float) -> float:
        self._orp_ec_take()
        return self.ec.read(temp_c)

    def read_all(self) -> Readings:
        """Read all sensors."""
        temperature = ChannelResult.capture(self.read_temp)
        # Don't invalidate the temperature-compensated readings just because
        # the RTD failed; the temperature field still carries the error.
        if temperature.ok:
            temp_c = temperature.value
        else:
            temp_c = self.fallback_temp_c
            logger.warning("RTD read failed (%s); compensating at %.1f °C",
                           temperature.error, temp_c)

        ph = ChannelResult.capture(self._read_ph_at, temp_c)
        if ph.ok and not validate_sensor_range(ph.value, 0.0, 14.0):
            logger.warning("pH reading %.3f outside 0-14", ph.value)

        orp = ec = None
        try:
            with self.arbiter.holding(ChannelId.ORP_EC, restore_to=ChannelId.PH):
                self.orp.take()
                self.ec.take()
                orp = ChannelResult.capture(self.orp.read)
                ec = ChannelResult.capture(self.ec.read, temp_c)
        except TransportError as e:
            if orp is None:
                # The ORP/EC converter could not be reached at all.
                orp = ec = ChannelResult(error=e)
            # A failed handback is retried below.

        try:
            self._ph_take()
        except TransportError as e:
            # The next operation takes the bus again before reading.
            logger.warning("Could not hand the ADC back to pH: %s", e)

        return Readings(ph=ph, temperature=temperature, ec=ec, orp=orp)

    def read_temp(self) -> float:
        """Read temperature from the MAX31865 RTD IC."""
        return self.rtd.read()

    def read_ph(self) -> float:
        """Read pH, compensated with the RTD temperature."""
        return self._read_ph_at(self.read_temp())

    def read_orp(self) -> float:
        """Read ORP from the `orp_ec` ADC."""
        self._orp_ec_take()
        return self.orp.read()

    def read_ec(self) -> float:
        """Read conductivity, compensated with the RTD temperature."""
        return self._read_ec_at(self.read_temp())

    def read_ph_voltage(self) -> float:
        """Read raw voltage from the pH probe."""
        self._ph_take()
        return self.ph.read_voltage()

    def read_temp_voltage(self) -> float:
        """Read raw voltage from the temperature output. This corresponds to a RTD resistance."""
        self._ph_take()
        return self.ph.read_temp_voltage()

    def read_circuit_temp(self) -> float:
        """Read temperature from the A3 circuit, using its 2-point calibration."""
        self._ph_take()
        return self.ph.read_circuit_temp()

    def read_orp_voltage(self) -> float:
        """Read raw voltage from the ORP probe."""
        self._orp_ec_take()
        return self.orp.read_voltage()

    def calibrate_ph(self, slot: CalSlot, ph: float):
        self._ph_take()
        return self.ph.calibrate(slot, ph, self.read_temp())

    def calibrate_orp(self, orp: float):
        self._orp_ec_take()
        return self.orp.calibrate(CalSlot.ONE, orp)

    def calibrate_all_ph(self, pt0: CalibrationPoint, pt1: CalibrationPoint,
                         pt2: Optional[CalibrationPoint] = None) -> None:
        self.ph.calibrate_all(pt0, pt1, pt2)

    def calibrate_all_orp(self, pt: CalibrationPoint) -> None:
        self.orp.calibrate_all(pt)

    def calibrate_all_temp(self, pt0: CalibrationPoint, pt1: CalibrationPoint) -> None:
        """Set the (voltage, °C) points of the A3 temperature circuit."""
        self.ph.temp_calibration.set_all(pt0, pt1)

    def calibrate_temp(self, known_temp_c: float = 100.0) -> float:
        """Calibrate the RTD with its probe at a known temperature (boiling water)."""
        return self.rtd.calibrate(known_temp_c)
