"""
Test HAL (Hardware Abstraction Layer) mock implementations
"""

import pytest
import os
from pathlib import Path
import sys

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from watermon.errors import TransportError
from watermon.hal import (
    DacCommand,
    InputSelector,
    MockADC,
    MockDAC,
    MockDelay,
    MockDigitalOutput,
    MockI2CBus,
    MockPulseOutput,
    MockRtd,
    RealMAX31865,
    SleepDelay,
    create_adc,
    create_dac,
    create_delay,
    create_i2c_bus,
    create_pulse_output,
    create_rtd,
    create_select_line,
    create_spi_bus,
)


class TestMockADC:
    """Test MockADC implementation."""

    def test_mock_adc_initialization(self):
        """Test MockADC initialization."""
        adc = MockADC()
        assert adc.address == 0x48  # Default address

        adc_custom = MockADC(address=0x49)
        assert adc_custom.address == 0x49

    def test_mock_adc_default_samples(self):
        """Probe input idles at 0V, single-ended inputs at 0.85V."""
        adc = MockADC()
        assert adc.read(InputSelector.DIFF_0_1) == 0
        assert adc.read(InputSelector.SINGLE_2) == round(0.85 / 2.048 * 32_767)
        assert adc.read(InputSelector.SINGLE_3) == adc.read(InputSelector.SINGLE_2)

    def test_set_voltage(self):
        """Voltages are stored as signed raw samples."""
        adc = MockADC()
        adc.set_voltage(InputSelector.DIFF_0_1, -0.5)
        assert adc.read(InputSelector.DIFF_0_1) == round(-0.5 / 2.048 * 32_767)

    def test_callable_sample(self):
        """Callables are evaluated on every read."""
        adc = MockADC()
        counter = iter(range(100))
        adc.samples[InputSelector.SINGLE_2] = lambda: next(counter)
        assert [adc.read(InputSelector.SINGLE_2) for _ in range(3)] == [0, 1, 2]

    def test_queued_samples(self):
        """Queued voltages come out in order and the last one repeats."""
        adc = MockADC()
        adc.queue_voltages(InputSelector.SINGLE_2, 0.2, 0.4)
        values = [adc.read(InputSelector.SINGLE_2) for _ in range(3)]
        expected = [round(v / 2.048 * 32_767) for v in (0.2, 0.4, 0.4)]
        assert values == expected

    def test_empty_queue_rejected(self):
        """A queue needs at least one voltage."""
        with pytest.raises(ValueError):
            MockADC().queue_voltages(InputSelector.SINGLE_2)

    def test_reads_recorded(self):
        """Every conversion is logged in order."""
        adc = MockADC()
        adc.read(InputSelector.SINGLE_3)
        adc.read(InputSelector.DIFF_0_1)
        assert adc.reads == [InputSelector.SINGLE_3, InputSelector.DIFF_0_1]

    def test_failure_simulation(self):
        """A configured error is raised on read."""
        adc = MockADC()
        adc.fail = TransportError("nack")
        with pytest.raises(TransportError):
            adc.read(InputSelector.DIFF_0_1)


class TestMockI2CBus:
    """Test the mock bus holding both converters."""

    def test_device_per_address(self):
        """Each address maps to one persistent converter."""
        bus = MockI2CBus()
        assert bus.device(0x48) is bus.device(0x48)
        assert bus.device(0x48) is not bus.device(0x49)
        assert bus.device(0x49).address == 0x49

    def test_vref_propagates(self):
        """Converters inherit the bus reference voltage."""
        bus = MockI2CBus(vref=4.096)
        assert bus.device(0x48).vref == 4.096


class TestMockOutputs:
    """Test DAC, GPIO, PWM, RTD and delay mocks."""

    def test_mock_dac_records(self):
        """Every command is kept."""
        dac = MockDAC()
        assert dac.last is None
        dac.send(DacCommand().value(10))
        dac.send(DacCommand().value(20))
        assert [c.code for c in dac.sent] == [10, 20]
        assert dac.last.code == 20

    def test_mock_dac_failure(self):
        """Failed writes are not recorded."""
        dac = MockDAC()
        dac.fail = TransportError("spi")
        with pytest.raises(TransportError):
            dac.send(DacCommand())
        assert dac.sent == []

    def test_mock_select_line(self):
        """Select lines start low."""
        line = MockDigitalOutput()
        assert line.value is False
        line.value = True
        assert line.value is True

    def test_mock_pwm_shared_events(self):
        """PWM mocks log state changes in one shared list."""
        events = []
        a = MockPulseOutput("a", events)
        b = MockPulseOutput("b", events)
        a.enable()
        b.enable()
        a.disable()
        assert events == [("a", True), ("b", True), ("a", False)]
        assert b.enabled and not a.enabled

    def test_mock_rtd(self):
        """RTD mock returns its configured temperature."""
        rtd = MockRtd()
        assert 15.0 <= rtd.read() <= 35.0
        rtd.temperature = 30.0
        assert rtd.read() == pytest.approx(30.0)
        rtd.fail = TransportError("fault")
        with pytest.raises(TransportError):
            rtd.read()

    def test_mock_rtd_calibrate(self):
        """Calibration removes a reference-resistor mismatch."""
        rtd = MockRtd(100.0)
        rtd.true_ref = 425.0
        assert rtd.read() > 103.0
        assert rtd.calibrate(100.0) == pytest.approx(425.0)
        assert rtd.read() == pytest.approx(100.0)

    def test_mock_delay(self):
        """Delays are recorded, not slept."""
        events = []
        delay = MockDelay(events)
        delay.wait_ms(200)
        delay.wait_us(5_319)
        assert delay.waits == [("ms", 200), ("us", 5_319)]
        assert events == [("wait_ms", 200), ("wait_us", 5_319)]


class FakeMax31865:
    """Stands in for the Adafruit driver object."""

    def __init__(self, temperature=25.0, resistance=138.5055, fault=(False,) * 6):
        self.temperature = temperature
        self.resistance = resistance
        self.rtd_nominal = 100.0
        self.ref_resistor = 430.0
        self._fault = fault
        self.fault_error = None
        self.cleared = 0

    @property
    def fault(self):
        if self.fault_error is not None:
            raise self.fault_error
        return self._fault

    def clear_faults(self):
        self.cleared += 1


class TestRealMAX31865:
    """Test fault handling around the MAX31865 driver."""

    def make(self, sensor):
        rtd = RealMAX31865.__new__(RealMAX31865)
        rtd.sensor = sensor
        return rtd

    def test_read(self):
        """Healthy reads return the driver temperature."""
        assert self.make(FakeMax31865(21.5)).read() == 21.5

    def test_fault_register_bus_error(self):
        """An SPI failure while checking faults is a transport error."""
        sensor = FakeMax31865()
        sensor.fault_error = OSError("spi")
        with pytest.raises(TransportError):
            self.make(sensor).read()

    def test_fault_flags(self):
        """Set fault flags are cleared and reported."""
        sensor = FakeMax31865(fault=(True, False, False, False, False, False))
        with pytest.raises(TransportError):
            self.make(sensor).read()
        assert sensor.cleared == 1

    def test_calibrate(self):
        """The reference resistor is rescaled to match the known temperature."""
        sensor = FakeMax31865(resistance=138.5055 * 430.0 / 428.0)
        ref = self.make(sensor).calibrate(100.0)
        assert ref == pytest.approx(428.0, rel=1e-4)
        assert sensor.ref_resistor == ref


class TestHALFactoryFunctions:
    """Test HAL factory functions."""

    def test_create_mock_mode(self):
        """Every factory returns a mock with mock=True."""
        bus = create_i2c_bus(mock=True)
        assert isinstance(bus, MockI2CBus)
        assert create_spi_bus(mock=True) is None
        assert isinstance(create_dac(None, "D6", mock=True), MockDAC)
        assert isinstance(create_select_line("D17", mock=True), MockDigitalOutput)
        assert isinstance(create_pulse_output("D12", mock=True), MockPulseOutput)
        assert isinstance(create_rtd(None, "D5", mock=True), MockRtd)
        assert isinstance(create_delay(mock=True), MockDelay)

    def test_create_adc_on_mock_bus(self):
        """Converters on a mock bus are the bus's own devices."""
        bus = create_i2c_bus(mock=True)
        adc = create_adc(bus, address=0x49)
        assert adc is bus.device(0x49)

    def test_create_adc_mock_mode(self):
        """Standalone mock converter at the requested address."""
        adc = create_adc(None, address=0x49, mock=True)
        assert isinstance(adc, MockADC)
        assert adc.address == 0x49

    def test_create_environment_variable(self):
        """Test factories with MOCK_HARDWARE environment variable."""
        os.environ['MOCK_HARDWARE'] = '1'

        try:
            assert isinstance(create_i2c_bus(), MockI2CBus)
            assert isinstance(create_rtd(None, "D5"), MockRtd)
            assert isinstance(create_delay(), MockDelay)
        finally:
            # Clean up environment
            if 'MOCK_HARDWARE' in os.environ:
                del os.environ['MOCK_HARDWARE']

    def test_real_delay_without_mock(self):
        """The host delay needs no hardware library."""
        assert isinstance(create_delay(mock=False), SleepDelay)


if __name__ == "__main__":
    pytest.main([__file__])
