"""
Electrical Conductivity Channel
===============================

Drives the CN-0411 style conductivity circuit: three PWM outputs build the
square-wave excitation, an MCP4921 DAC sets its amplitude, and an ADG1608
multiplexer (three select lines) picks the gain resistor. The two
half-bridge voltages are read on inputs A2/A3 of the ORP/EC converter, so
this channel shares ownership with the ORP channel.

A reading runs one auto-ranging cycle:

    IDLE -> EXCITING -> RANGING -> MEASURING -> IDLE

Ranging always restarts from the highest-resistance rung. Any error during
the cycle still leaves PWM disabled and the DAC shut down.
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Sequence, Tuple

from .arbiter import ChannelId, DeviceArbiter
from .channels import SharedAdcClient
from .conversions import DEFAULT_VREF, EC_GAIN_RESISTORS, ec_from_voltages
from .errors import GainLimitReached
from .hal import AnalogOutput, DacCommand, DacChannel, Delay, DigitalOutput, InputSelector, PulseOutput
from .kalman import RecursiveFilter

logger = logging.getLogger(__name__)

# Half period of the 94 Hz excitation, in microseconds.
PHASE_OFFSET_US = 5_319
INITIAL_EXCITATION_V = 0.4
# Ranging stops once V+ + V- reaches this fraction of 2 * V_exc.
RANGE_FRACTION = 0.6
DAC_FULL_SCALE = 4_095


class EcGain(IntEnum):
    """Gain rung; the value matches the ADG1608 S input it selects (S1 unused)."""

    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8

    def raised(self) -> "EcGain":
        """Raise by one level."""
        if self is EcGain.EIGHT:
            raise GainLimitReached("Gain is already at maximum")
        return EcGain(self + 1)

    def dropped(self) -> "EcGain":
        """Drop by one level."""
        if self is EcGain.TWO:
            raise GainLimitReached("Gain is already at minimum")
        return EcGain(self - 1)

    @property
    def select_bits(self) -> Tuple[bool, bool, bool]:
        code = self - 1
        return (bool(code & 1), bool(code & 2), bool(code & 4))

    @property
    def resistor(self) -> float:
        return EC_GAIN_RESISTORS[int(self)]


class GainSwitch:
    """ADG1608 multiplexer addressed by three select lines.

    The enable pin must be pulled high in hardware.
    """

    def __init__(self, pins: Sequence[DigitalOutput]):
        if len(pins) != 3:
            raise ValueError(f"ADG1608 needs 3 select lines, got {len(pins)}")
        self.pins = tuple(pins)
        self.gain: Optional[EcGain] = None

    def set(self, gain: EcGain) -> None:
        for pin, level in zip(self.pins, gain.select_bits):
            pin.value = level
        self.gain = gain


class PwmExciter:
    """The three pulse trains driving the square wave.

    PWM frequency (94 Hz) and duty cycles are configured on the outputs
    beforehand; this only switches them on and off.
    """

    def __init__(self, outputs: Sequence[PulseOutput], delay: Delay,
                 phase_offset_us: int = PHASE_OFFSET_US):
        if len(outputs) != 3:
            raise ValueError(f"Excitation needs 3 PWM outputs, got {len(outputs)}")
        self.outputs = tuple(outputs)
        self.delay = delay
        self.phase_offset_us = phase_offset_us
        self.running = False

    def start(self) -> None:
        p0, p1, p2 = self.outputs
        p0.enable()
        p1.enable()
        self.delay.wait_us(self.phase_offset_us)
        p2.enable()
        self.running = True

    def stop(self) -> None:
        for output in self.outputs:
            output.disable()
        self.running = False


def dac_code(volts: float, vref: float = DEFAULT_VREF) -> int:
    """12-bit DAC code for an output voltage, clamped to the DAC range."""
    code = round(volts / vref * DAC_FULL_SCALE)
    return max(0, min(DAC_FULL_SCALE, code))


class Excitation:
    """Excitation amplitude on the MCP4921, channel A, 1x gain."""

    def __init__(self, dac: AnalogOutput, vref: float = DEFAULT_VREF):
        self.dac = dac
        self.vref = vref
        self.voltage = 0.0
        self.command = DacCommand().on_channel(DacChannel.A)

    def wake(self) -> None:
        """Leave the DAC's low-power shutdown mode."""
        self.command = self.command.enable()
        self.dac.send(self.command)

    def shutdown(self) -> None:
        self.command = self.command.shutdown()
        self.dac.send(self.command)

    def set(self, volts: float) -> float:
        """Set the excitation voltage; returns the voltage actually applied."""
        code = dac_code(volts, self.vref)
        self.command = self.command.value(code)
        self.dac.send(self.command)
        self.voltage = code / DAC_FULL_SCALE * self.vref
        return self.voltage


class EcState(Enum):
    IDLE = "idle"
    EXCITING = "exciting"
    RANGING = "ranging"
    MEASURING = "measuring"


@dataclass(frozen=True)
class EcSample:
    """Settled voltage pair from one auto-ranging cycle."""

    v_p: float
    v_m: float
    v_exc: float
    gain: EcGain


class EcChannel(SharedAdcClient):
    """Conductivity in µS/cm, compensated to 25°C when a temperature is given."""

    name = "ec"
    jump_threshold = 100.0
    measurement_std = 10.0

    def __init__(self, arbiter: DeviceArbiter, dac: AnalogOutput,
                 select_lines: Sequence[DigitalOutput], pwm_outputs: Sequence[PulseOutput],
                 delay: Delay, channel_id: ChannelId = ChannelId.ORP_EC, dt: float = 1.0,
                 vref: float = DEFAULT_VREF, dac_vref: float = DEFAULT_VREF,
                 cell_constant: float = 1.0, target_voltage: float = 0.8,
                 settle_ms: int = 200):
        super().__init__(arbiter, channel_id, vref)
        self.excitation = Excitation(dac, dac_vref)
        self.switch = GainSwitch(select_lines)
        self.exciter = PwmExciter(pwm_outputs, delay)
        self.delay = delay
        self.cell_constant = cell_constant
        self.target_voltage = target_voltage
        self.settle_ms = settle_ms
        self.filter = RecursiveFilter(dt, self.measurement_std, self.jump_threshold)

        self.state = EcState.IDLE
        self.gain = EcGain.EIGHT
        self.last_sample: Optional[EcSample] = None

    def read_voltages(self) -> Tuple[float, float]:
        """Read V+ (A2) and V- (A3) from the ORP/EC converter."""
        return self._voltage(InputSelector.SINGLE_2), self._voltage(InputSelector.SINGLE_3)

    def set_range(self) -> EcGain:
        """Pick the gain rung and excitation voltage. See CN-0411, Table 12."""
        gain = EcGain.EIGHT
        self.switch.set(gain)
        v_exc = self.excitation.set(INITIAL_EXCITATION_V)
        v_p, v_m = self.read_voltages()

        while v_p + v_m < RANGE_FRACTION * 2.0 * v_exc:
            if gain is EcGain.TWO:
                # Lowest rung; nothing left to reduce.
                break
            gain = gain.dropped()
            self.switch.set(gain)
            v_p, v_m = self.read_voltages()

        total = v_p + v_m
        if total > 0:
            v_exc = self.excitation.set(self.target_voltage * v_exc / total)
        logger.debug("ec ranged: gain=%d v_exc=%.4f (v+=%.4f v-=%.4f)", gain, v_exc, v_p, v_m)
        self.gain = gain
        return gain

    def measure(self) -> EcSample:
        """Run one excitation/ranging/measurement cycle."""
        try:
            self.state = EcState.EXCITING
            self.excitation.wake()
            self.exciter.start()

            self.state = EcState.RANGING
            gain = self.set_range()

            self.state = EcState.MEASURING
            self.delay.wait_ms(self.settle_ms)
            v_p, v_m = self.read_voltages()
        finally:
            self.state = EcState.IDLE
            try:
                self.exciter.stop()
            finally:
                self.excitation.shutdown()

        self.last_sample = EcSample(v_p, v_m, self.excitation.voltage, gain)
        return self.last_sample

    def read_raw(self, temp_c: Optional[float] = None) -> float:
        """Take a conductivity reading without the filter."""
        sample = self.measure()
        ec = ec_from_voltages(sample.v_p, sample.v_m, sample.v_exc, int(sample.gain),
                              temp_c, self.cell_constant)
        logger.debug("ec: %s -> %.2f uS/cm (T=%s)", sample, ec, temp_c)
        return ec

    def read(self, temp_c: Optional[float] = None) -> float:
        """Take a filtered conductivity reading."""
        self.filter.predict()
        self.filter.update(self.read_raw(temp_c))
        return self.filter.value
