"""
Test channels.py - pH, ORP and RTD channels over mock hardware
"""

import pytest
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from watermon.arbiter import ChannelId, DeviceArbiter
from watermon.calibration import CalSlot, CalibrationPoint
from watermon.channels import OrpChannel, PhChannel, RtdChannel, RtdType, RtdWires
from watermon.errors import TransportError
from watermon.hal import InputSelector, MockI2CBus, MockRtd


class TestPhChannel:
    """Test the pH channel pipeline."""

    def setup_method(self):
        """pH channel holding the 0x48 mock converter."""
        self.bus = MockI2CBus()
        self.arbiter = DeviceArbiter(self.bus)
        self.ph = PhChannel(self.arbiter)
        self.ph.take()
        self.adc = self.bus.device(0x48)
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.085)

    def test_read_voltage(self):
        """Probe voltage comes from the differential input."""
        assert self.ph.read_voltage() == pytest.approx(0.085, abs=1e-4)
        assert self.adc.reads[-1] is InputSelector.DIFF_0_1

    def test_read_raw_offboard_temperature(self):
        """Off-board temperature is used as given."""
        assert self.ph.read_raw(25.0) == pytest.approx(5.5, abs=1e-3)
        assert InputSelector.SINGLE_2 not in self.adc.reads

    def test_read_raw_onboard_temperature(self):
        """No temperature reads the onboard tap (0.85V = 25°C)."""
        assert self.ph.read_temp() == pytest.approx(25.0, abs=0.01)
        assert self.ph.read_raw() == pytest.approx(5.5, abs=1e-3)
        assert InputSelector.SINGLE_2 in self.adc.reads

    def test_first_read_lands_on_measurement(self):
        """A reading far from the prior resets the filter onto it."""
        assert self.ph.read(25.0) == pytest.approx(5.5, abs=0.01)

    def test_filtered_reads_follow_step(self):
        """Moving the probe to a new buffer shows up on the next read."""
        for _ in range(20):
            self.ph.read(25.0)
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.0)
        assert self.ph.read(25.0) == pytest.approx(7.0, abs=0.01)

    def test_predict_update_exposed(self):
        """predict/update are the two halves of read."""
        self.ph.predict()
        assert self.ph.update(25.0) is True
        assert self.ph.filter.value == pytest.approx(5.5, abs=0.01)

    def test_calibrate_slot(self):
        """Calibration captures voltage and temperature into the slot."""
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.17)
        voltage, temp = self.ph.calibrate(CalSlot.TWO, 4.01, 21.0)
        assert voltage == pytest.approx(0.17, abs=1e-4)
        assert temp == 21.0
        point = self.ph.calibration.get(CalSlot.TWO)
        assert point.quantity == 4.01
        assert point.temperature == 21.0

    def test_calibrate_onboard_temperature(self):
        """Without a temperature the onboard tap is captured."""
        _, temp = self.ph.calibrate(CalSlot.ONE, 7.0)
        assert temp == pytest.approx(25.0, abs=0.01)

    def test_calibrate_all_and_reset(self):
        """Bulk replacement and factory reset."""
        self.ph.calibrate_all(CalibrationPoint(0.0, 7.0, 25.0), CalibrationPoint(0.17, 4.0, 25.0),
                              CalibrationPoint(-0.17, 10.0, 25.0))
        assert CalSlot.THREE in self.ph.calibration.points
        self.ph.reset_calibration()
        assert CalSlot.THREE not in self.ph.calibration.points

    def test_temp_voltage(self):
        """RTD circuit voltage is read from A3."""
        self.adc.set_voltage(InputSelector.SINGLE_3, 0.5)
        assert self.ph.read_temp_voltage() == pytest.approx(0.5, abs=1e-4)

    def test_circuit_temperature(self):
        """A3 voltage maps through the 0°C/85°C calibration."""
        self.adc.set_voltage(InputSelector.SINGLE_3, 0.135)
        assert self.ph.read_circuit_temp() == pytest.approx(0.0, abs=0.01)
        self.adc.set_voltage(InputSelector.SINGLE_3, 0.96)
        assert self.ph.read_circuit_temp() == pytest.approx(85.0, abs=0.01)

    def test_transport_error_propagates(self):
        """Bus errors surface unchanged."""
        error = TransportError("i2c nack")
        self.adc.fail = error
        with pytest.raises(TransportError) as exc_info:
            self.ph.read(25.0)
        assert exc_info.value is error


class TestOrpChannel:
    """Test the ORP channel."""

    def setup_method(self):
        self.bus = MockI2CBus()
        self.orp = OrpChannel(DeviceArbiter(self.bus))
        self.orp.take()
        self.adc = self.bus.device(0x49)

    def test_default_channel_side(self):
        """ORP shares the ORP/EC side of the bus."""
        assert self.orp.channel_id is ChannelId.ORP_EC

    def test_read_raw(self):
        """Default calibration maps 0.2V to 200mV."""
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.2)
        assert self.orp.read_raw() == pytest.approx(200.0, abs=0.1)

    def test_no_temperature_reads(self):
        """ORP never touches the temperature tap."""
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.2)
        self.orp.read()
        assert InputSelector.SINGLE_2 not in self.adc.reads

    def test_calibrate(self):
        """Single-point calibration returns no temperature."""
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.25)
        voltage, temp = self.orp.calibrate(CalSlot.ONE, 225.0)
        assert voltage == pytest.approx(0.25, abs=1e-4)
        assert temp is None
        assert self.orp.read_raw() == pytest.approx(225.0, abs=0.1)

    def test_jump_threshold(self):
        """Steps over 30mV are not smoothed."""
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.2)
        for _ in range(10):
            self.orp.read()
        self.adc.set_voltage(InputSelector.DIFF_0_1, 0.3)
        assert self.orp.read() == pytest.approx(300.0, abs=1.0)


class TestRtdChannel:
    """Test the independent RTD channel."""

    def test_read(self):
        """Temperature comes straight from the device."""
        rtd = RtdChannel(MockRtd(18.25))
        assert rtd.read() == pytest.approx(18.25)

    def test_failure(self):
        """Device errors propagate."""
        device = MockRtd()
        device.fail = TransportError("spi")
        with pytest.raises(TransportError):
            RtdChannel(device).read()

    def test_calibrate(self):
        """Boiling-water calibration corrects the reference resistor."""
        device = MockRtd(100.0)
        device.true_ref = 432.0
        rtd = RtdChannel(device)
        assert rtd.read() < 99.5

        assert rtd.calibrate() == pytest.approx(432.0)
        assert rtd.read() == pytest.approx(100.0)
        device.temperature = 20.0
        assert rtd.read() == pytest.approx(20.0)

    def test_calibrate_failure(self):
        """Device errors during calibration propagate and keep the old reference."""
        device = MockRtd(100.0)
        device.fail = TransportError("spi")
        with pytest.raises(TransportError):
            RtdChannel(device).calibrate()
        assert device.ref_resistor == 430.0

    def test_create_mock(self):
        """Factory builds a mock device when asked."""
        rtd = RtdChannel.create(None, "D5", RtdType.PT1000, RtdWires.FOUR, mock=True)
        assert isinstance(rtd.device, MockRtd)

    def test_rtd_types(self):
        """Nominal and reference resistances per element."""
        assert RtdType.PT100.value == (100.0, 430.0)
        assert RtdType.PT1000.value == (1000.0, 4300.0)


if __name__ == "__main__":
    pytest.main([__file__])
