"""
Hardware Abstraction Layer for the Water Monitor
================================================

Defines protocols for the collaborators the measurement core drives: the
shared ADS1115 converter, the MCP4921 excitation DAC, gain select lines,
PWM exciter outputs, the MAX31865 RTD amplifier and blocking delays.
Provides both real hardware interfaces (Adafruit CircuitPython / Blinka)
and mock implementations for testing.
"""

from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Protocol, Union
import os
import time

from .conversions import calibrated_reference, rtd_resistance, rtd_temperature
from .errors import TransportError


class InputSelector(Enum):
    """Logical ADC inputs used by the channels."""

    DIFF_0_1 = "A0-A1"  # pH / ORP probe
    SINGLE_2 = "A2"     # onboard temperature tap, EC V+
    SINGLE_3 = "A3"     # RTD circuit voltage, EC V-


class DacChannel(Enum):
    A = 0
    B = 1


@dataclass(frozen=True)
class DacCommand:
    """MCP4921/4922 16-bit write command.

    Bit 15 selects the channel, bit 14 buffers VREF, bit 13 is the inverted
    gain select (1 = 1x), bit 12 is the inverted shutdown (1 = active), bits
    11..0 are the output code.
    """

    channel: DacChannel = DacChannel.A
    buffered: bool = False
    double_gain: bool = False
    active: bool = True
    code: int = 0

    def value(self, code: int) -> "DacCommand":
        if not 0 <= code <= 0x0FFF:
            raise ValueError(f"DAC code {code} out of 12-bit range")
        return replace(self, code=code)

    def on_channel(self, channel: DacChannel) -> "DacCommand":
        return replace(self, channel=channel)

    def enable(self) -> "DacCommand":
        return replace(self, active=True)

    def shutdown(self) -> "DacCommand":
        return replace(self, active=False)

    def to_word(self) -> int:
        word = self.code & 0x0FFF
        if self.channel is DacChannel.B:
            word |= 1 << 15
        if self.buffered:
            word |= 1 << 14
        if not self.double_gain:
            word |= 1 << 13
        if self.active:
            word |= 1 << 12
        return word

    def to_bytes(self) -> bytes:
        return self.to_word().to_bytes(2, "big")


class AnalogConverter(Protocol):
    """Protocol for the shared Analog-to-Digital Converter."""

    def read(self, selector: InputSelector) -> int:
        """Perform a one-shot conversion.

        Args:
            selector: Logical input to convert

        Returns:
            Signed raw sample (-32768..32767)

        Raises:
            TransportError: if the bus transaction fails
        """
        ...


class AnalogOutput(Protocol):
    """Protocol for the excitation DAC."""

    def send(self, command: DacCommand) -> None:
        ...


class DigitalOutput(Protocol):
    """Protocol for a push-pull select line."""

    value: bool


class PulseOutput(Protocol):
    """Protocol for a pre-configured PWM channel."""

    def enable(self) -> None:
        ...

    def disable(self) -> None:
        ...


class ResistanceTemperatureDevice(Protocol):
    """Protocol for the RTD amplifier on its own SPI bus."""

    def read(self) -> float:
        """Read temperature in Celsius."""
        ...

    def calibrate(self, known_temp_c: float = 100.0) -> float:
        """Correct the reference resistor with the probe at `known_temp_c`.

        Returns:
            The new reference resistance in ohms
        """
        ...


class Delay(Protocol):
    def wait_ms(self, ms: int) -> None:
        ...

    def wait_us(self, us: int) -> None:
        ...


# ---------- Real hardware ----------

def _require_blinka():
    try:
        import board
        import busio
        import digitalio
    except (ImportError, NotImplementedError) as e:
        raise RuntimeError(f"Adafruit Blinka not available: {e}")
    return board, busio, digitalio


def _pin(board, name):
    if not isinstance(name, str):
        return name
    try:
        return getattr(board, name)
    except AttributeError:
        raise ValueError(f"Unknown board pin {name!r}")


class RealADS1115:
    """Real ADS1115 ADC implementation using Adafruit libraries."""

    def __init__(self, i2c, address: int = 0x48, gain: int = 2):
        """Initialize ADS1115 on an existing I2C bus.

        Args:
            i2c: busio.I2C instance shared with the other converter
            address: I2C address (0x48 or 0x49)
            gain: PGA gain; 2 gives the +-2.048V range
        """
        try:
            import adafruit_ads1x15.ads1115 as ADS
            from adafruit_ads1x15.analog_in import AnalogIn
        except ImportError as e:
            raise RuntimeError(f"Adafruit ADS1x15 library not available: {e}")

        try:
            self.adc = ADS.ADS1115(i2c, gain=gain, address=address)
        except (OSError, ValueError) as e:
            raise TransportError(f"ADS1115 at {address:#04x} not responding: {e}") from e
        self.address = address
        self.AnalogIn = AnalogIn
        self.pins = {
            InputSelector.DIFF_0_1: (ADS.P0, ADS.P1),
            InputSelector.SINGLE_2: (ADS.P2,),
            InputSelector.SINGLE_3: (ADS.P3,),
        }

    def read(self, selector: InputSelector) -> int:
        try:
            return int(self.AnalogIn(self.adc, *self.pins[selector]).value)
        except (OSError, RuntimeError) as e:
            raise TransportError(f"ADS1115 {self.address:#04x} {selector.value}: {e}") from e


class RealMCP4921:
    """MCP4921 DAC on SPI, written through adafruit_bus_device."""

    def __init__(self, spi, cs_pin, baudrate: int = 1_000_000):
        board, _, digitalio = _require_blinka()
        try:
            from adafruit_bus_device.spi_device import SPIDevice
        except ImportError as e:
            raise RuntimeError(f"Adafruit BusDevice library not available: {e}")

        cs = digitalio.DigitalInOut(_pin(board, cs_pin))
        self.device = SPIDevice(spi, cs, baudrate=baudrate, polarity=0, phase=0)

    def send(self, command: DacCommand) -> None:
        try:
            with self.device as spi:
                spi.write(command.to_bytes())
        except OSError as e:
            raise TransportError(f"MCP4921 write failed: {e}") from e


class RealDigitalOutput:
    """GPIO select line via digitalio."""

    def __init__(self, pin):
        board, _, digitalio = _require_blinka()
        self.io = digitalio.DigitalInOut(_pin(board, pin))
        self.io.direction = digitalio.Direction.OUTPUT

    @property
    def value(self) -> bool:
        return bool(self.io.value)

    @value.setter
    def value(self, level: bool) -> None:
        self.io.value = bool(level)


class RealPulseOutput:
    """PWM channel via pwmio. Frequency and duty are fixed at construction."""

    def __init__(self, pin, frequency: int = 94, duty_cycle: int = 0x8000):
        board, _, _ = _require_blinka()
        try:
            import pwmio
        except (ImportError, NotImplementedError) as e:
            raise RuntimeError(f"pwmio not available: {e}")

        self.duty_cycle = duty_cycle
        self.pwm = pwmio.PWMOut(_pin(board, pin), frequency=frequency, duty_cycle=0)

    def enable(self) -> None:
        self.pwm.duty_cycle = self.duty_cycle

    def disable(self) -> None:
        self.pwm.duty_cycle = 0


class RealMAX31865:
    """MAX31865 RTD amplifier using the Adafruit driver."""

    def __init__(self, spi, cs_pin, rtd_nominal: float = 100.0,
                 ref_resistor: float = 430.0, wires: int = 3):
        board, _, digitalio = _require_blinka()
        try:
            import adafruit_max31865
        except ImportError as e:
            raise RuntimeError(f"Adafruit MAX31865 library not available: {e}")

        cs = digitalio.DigitalInOut(_pin(board, cs_pin))
        self.sensor = adafruit_max31865.MAX31865(
            spi,
            cs,
            wires=wires,
            rtd_nominal=rtd_nominal,
            ref_resistor=ref_resistor,
        )

    def _checked(self, measure):
        """Run one measurement, then check the fault register over the same bus."""
        try:
            value = measure()
            fault = self.sensor.fault
            if any(fault):
                self.sensor.clear_faults()
        except OSError as e:
            raise TransportError(f"MAX31865 read failed: {e}") from e
        if any(fault):
            raise TransportError(f"MAX31865 fault flags set: {fault}")
        return float(value)

    def read(self) -> float:
        return self._checked(lambda: self.sensor.temperature)

    def calibrate(self, known_temp_c: float = 100.0) -> float:
        measured = self._checked(lambda: self.sensor.resistance)
        self.sensor.ref_resistor = calibrated_reference(
            self.sensor.ref_resistor, measured, known_temp_c, self.sensor.rtd_nominal)
        return self.sensor.ref_resistor


class SleepDelay:
    """Blocking delay on the host clock."""

    def wait_ms(self, ms: int) -> None:
        time.sleep(ms / 1000.0)

    def wait_us(self, us: int) -> None:
        time.sleep(us / 1_000_000.0)


# ---------- Mocks ----------

Sample = Union[int, Callable[[], int], Deque[int]]


class MockADC:
    """Mock ADC implementation for testing.

    Samples are fixed raw values, callables evaluated per read, or a queue
    (see `queue_voltages`) whose last entry repeats once the rest are used.
    Set `fail` to an exception instance to simulate a bus error.
    """

    def __init__(self, address: int = 0x48, vref: float = 2.048):
        self.address = address
        self.vref = vref
        self.samples: Dict[InputSelector, Sample] = {InputSelector.DIFF_0_1: 0}
        # 0.85V on the single-ended inputs: 25°C on the onboard tap
        self.set_voltage(InputSelector.SINGLE_2, 0.85)
        self.set_voltage(InputSelector.SINGLE_3, 0.85)
        self.fail: Optional[Exception] = None
        self.reads: List[InputSelector] = []

    def set_voltage(self, selector: InputSelector, volts: float) -> None:
        """Program a selector to return the sample for a given voltage."""
        self.samples[selector] = round(volts / self.vref * 32_767)

    def queue_voltages(self, selector: InputSelector, *volts: float) -> None:
        """Program a selector to return successive voltages, one per read."""
        if not volts:
            raise ValueError("queue_voltages needs at least one voltage")
        self.samples[selector] = deque(round(v / self.vref * 32_767) for v in volts)

    def read(self, selector: InputSelector) -> int:
        self.reads.append(selector)
        if self.fail is not None:
            raise self.fail
        sample = self.samples[selector]
        if isinstance(sample, deque):
            sample = sample.popleft() if len(sample) > 1 else sample[0]
        elif callable(sample):
            sample = sample()
        return int(sample)


class MockI2CBus:
    """Stand-in for busio.I2C; holds one MockADC per address."""

    def __init__(self, vref: float = 2.048):
        self.vref = vref
        self.devices: Dict[int, MockADC] = {}

    def device(self, address: int) -> MockADC:
        if address not in self.devices:
            self.devices[address] = MockADC(address, vref=self.vref)
        return self.devices[address]


class MockDAC:
    """Records every command sent to it."""

    def __init__(self):
        self.sent: List[DacCommand] = []
        self.fail: Optional[Exception] = None

    def send(self, command: DacCommand) -> None:
        if self.fail is not None:
            raise self.fail
        self.sent.append(command)

    @property
    def last(self) -> Optional[DacCommand]:
        return self.sent[-1] if self.sent else None


class MockDigitalOutput:
    def __init__(self, value: bool = False):
        self.value = value


class MockPulseOutput:
    """PWM mock; appends (name, state) to a shared event log when given one."""

    def __init__(self, name: str = "pwm", events: Optional[list] = None):
        self.name = name
        self.enabled = False
        self.events = events if events is not None else []

    def enable(self) -> None:
        self.enabled = True
        self.events.append((self.name, True))

    def disable(self) -> None:
        self.enabled = False
        self.events.append((self.name, False))


class MockRtd:
    """Mock RTD implementation for testing.

    Models a MAX31865 whose configured reference resistor may differ from
    the one fitted (`true_ref`): readings are scaled by that error until
    `calibrate` corrects it.
    """

    def __init__(self, temperature: float = 22.5, rtd_nominal: float = 100.0,
                 ref_resistor: float = 430.0):
        self.temperature = temperature
        self.rtd_nominal = rtd_nominal
        self.ref_resistor = ref_resistor
        self.true_ref = ref_resistor
        self.fail: Optional[Exception] = None

    @property
    def resistance(self) -> float:
        actual = rtd_resistance(self.temperature, self.rtd_nominal)
        return actual * self.ref_resistor / self.true_ref

    def read(self) -> float:
        if self.fail is not None:
            raise self.fail
        return rtd_temperature(self.resistance, self.rtd_nominal)

    def calibrate(self, known_temp_c: float = 100.0) -> float:
        if self.fail is not None:
            raise self.fail
        self.ref_resistor = calibrated_reference(
            self.ref_resistor, self.resistance, known_temp_c, self.rtd_nominal)
        return self.ref_resistor


class MockDelay:
    """Records waits instead of sleeping."""

    def __init__(self, events: Optional[list] = None):
        self.waits: List[tuple] = []
        self.events = events if events is not None else []

    def wait_ms(self, ms: int) -> None:
        self.waits.append(("ms", ms))
        self.events.append(("wait_ms", ms))

    def wait_us(self, us: int) -> None:
        self.waits.append(("us", us))
        self.events.append(("wait_us", us))


# ---------- Factories ----------

def mock_requested(mock: bool = False) -> bool:
    return mock or os.getenv('MOCK_HARDWARE', '0') == '1'


def create_i2c_bus(mock: bool = False, vref: float = 2.048):
    """Create the I2C bus shared by both ADS1115 converters."""
    if mock_requested(mock):
        return MockI2CBus(vref=vref)
    board, busio, _ = _require_blinka()
    return busio.I2C(board.SCL, board.SDA)


def create_spi_bus(mock: bool = False):
    """Create the SPI bus used by the DAC and the RTD amplifier."""
    if mock_requested(mock):
        return None
    board, busio, _ = _require_blinka()
    return busio.SPI(board.SCK, MOSI=board.MOSI, MISO=board.MISO)


def create_adc(bus, address: int = 0x48, mock: bool = False) -> AnalogConverter:
    """Factory function to create an ADC instance on a bus.

    Args:
        bus: busio.I2C or MockI2CBus
        address: I2C address for ADS1115
        mock: If True, return mock implementation

    Returns:
        AnalogConverter instance (real or mock)
    """
    if isinstance(bus, MockI2CBus):
        return bus.device(address)
    if mock_requested(mock):
        return MockADC(address)
    return RealADS1115(bus, address)


def create_dac(spi, cs_pin, mock: bool = False) -> AnalogOutput:
    if mock_requested(mock):
        return MockDAC()
    return RealMCP4921(spi, cs_pin)


def create_select_line(pin, mock: bool = False) -> DigitalOutput:
    if mock_requested(mock):
        return MockDigitalOutput()
    return RealDigitalOutput(pin)


def create_pulse_output(pin, frequency: int = 94, duty_cycle: int = 0x8000,
                        mock: bool = False) -> PulseOutput:
    if mock_requested(mock):
        return MockPulseOutput(str(pin))
    return RealPulseOutput(pin, frequency, duty_cycle)


def create_rtd(spi, cs_pin, rtd_nominal: float = 100.0, ref_resistor: float = 430.0,
               wires: int = 3, mock: bool = False) -> ResistanceTemperatureDevice:
    if mock_requested(mock):
        return MockRtd(rtd_nominal=rtd_nominal, ref_resistor=ref_resistor)
    return RealMAX31865(spi, cs_pin, rtd_nominal, ref_resistor, wires)


def create_delay(mock: bool = False) -> Delay:
    if mock_requested(mock):
        return MockDelay()
    return SleepDelay()
