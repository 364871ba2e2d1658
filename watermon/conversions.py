"""
Pure Mathematical Conversions for the Water Monitor
===================================================

Contains pure functions for converting raw ADC samples and sensor voltages
to physical measurements. All functions are stateless and testable without
hardware dependencies.
"""

import math
from typing import Optional, Sequence, Tuple

from .errors import SignalOutOfRange

Point = Tuple[float, float]

# ADS1115 full-scale reference at PGA gain 2.
DEFAULT_VREF = 2.048

# pH sensitivity drift, in pH / (V * °C).
PH_TEMP_COEFFICIENT = -0.05694

# Callendar-Van Dusen coefficients for platinum RTDs (IEC 60751), T >= 0°C.
RTD_A = 3.9083e-3
RTD_B = -5.775e-7

# Series resistor selected by each EC gain rung, in ohms.
EC_GAIN_RESISTORS = {
    2: 20.0,
    3: 200.0,
    4: 2_000.0,
    5: 20_000.0,
    6: 200_000.0,
    7: 2_000_000.0,
    8: 20_000_000.0,
}


def voltage_from_sample(raw: int, vref: float = DEFAULT_VREF) -> float:
    """Convert a signed 16-bit ADC sample to volts.

    Args:
        raw: Sample in -32768..32767
        vref: Full-scale reference of the converter in volts

    Returns:
        Voltage in volts (+-vref)
    """
    return raw / 32_767.0 * vref


def temp_from_voltage(voltage: float) -> float:
    """Map the onboard TI LM61 temperature tap voltage to °C."""
    return 100.0 * voltage - 60.0


def rtd_resistance(temp_c: float, rtd_nominal: float = 100.0) -> float:
    """Platinum RTD resistance in ohms at `temp_c` (0°C and above)."""
    return rtd_nominal * (1.0 + RTD_A * temp_c + RTD_B * temp_c ** 2)


def rtd_temperature(resistance: float, rtd_nominal: float = 100.0) -> float:
    """Invert `rtd_resistance`: temperature in °C of a platinum RTD."""
    z = 1.0 - resistance / rtd_nominal
    return (-RTD_A + math.sqrt(RTD_A ** 2 - 4.0 * RTD_B * z)) / (2.0 * RTD_B)


def calibrated_reference(ref_resistor: float, measured_resistance: float,
                         known_temp_c: float = 100.0, rtd_nominal: float = 100.0) -> float:
    """Rescale the RTD amplifier's reference resistor from one known point.

    The amplifier reports resistance as a ratio of the reference, so the
    error in the configured reference scales every reading. Measuring with
    the probe at a known temperature (boiling water) gives the correction.

    Args:
        ref_resistor: Currently configured reference resistance in ohms
        measured_resistance: RTD resistance reported with that reference
        known_temp_c: Actual temperature of the probe
        rtd_nominal: RTD resistance at 0°C

    Returns:
        Corrected reference resistance in ohms
    """
    if measured_resistance <= 0:
        raise SignalOutOfRange(f"RTD reads {measured_resistance} ohm; check the probe")
    return ref_resistor * rtd_resistance(known_temp_c, rtd_nominal) / measured_resistance


def linear_from_points(voltage: float, pt0: Point, pt1: Point,
                       slope_offset: float = 0.0) -> float:
    """Evaluate the line through two (voltage, quantity) points.

    Args:
        voltage: Input voltage
        pt0: First calibration point
        pt1: Second calibration point
        slope_offset: Added to the fitted slope (temperature compensation)

    Returns:
        Quantity at `voltage`
    """
    slope = (pt1[1] - pt0[1]) / (pt1[0] - pt0[0])
    intercept = pt1[1] - slope * pt1[0]
    return (slope + slope_offset) * voltage + intercept


def lagrange(points: Sequence[Point], x: float) -> float:
    """Evaluate the Lagrange interpolating polynomial through `points` at `x`.

    P(x) = sum_j y_j * prod_{i != j} (x - x_i) / (x_j - x_i)
    """
    result = 0.0
    for j, (xj, yj) in enumerate(points):
        basis = 1.0
        for i, (xi, _) in enumerate(points):
            if i == j:
                continue
            basis *= (x - xi) / (xj - xi)
        result += yj * basis
    return result


def ratio_from_point(voltage: float, pt: Point) -> float:
    """Scale `voltage` by the quantity/voltage ratio of a single point.

    The model is the line through the origin and the calibration point.
    """
    return pt[1] / pt[0] * voltage


def ph_temp_slope(temp_c: float, cal_temp_c: float) -> float:
    """Slope correction in pH/V for a reading at `temp_c` against a calibration
    taken at `cal_temp_c`."""
    return PH_TEMP_COEFFICIENT * (temp_c - cal_temp_c)


def compensate_temperature(value: float, temp_c: float, reference_temp: float = 25.0,
                           coefficient: float = 0.02) -> float:
    """Apply temperature compensation to a measurement.

    Generic temperature compensation function for any measurement that
    has a linear temperature dependence.

    Args:
        value: Measurement value to compensate
        temp_c: Current temperature in Celsius
        reference_temp: Reference temperature (default 25°C)
        coefficient: Temperature coefficient (default 2%/°C = 0.02)

    Returns:
        Temperature-compensated value
    """
    if temp_c is None or value is None:
        return value

    compensation_factor = 1.0 + coefficient * (temp_c - reference_temp)

    # Ensure factor is positive
    if compensation_factor <= 0:
        compensation_factor = 1.0

    return value / compensation_factor


def cell_resistance(v_p: float, v_m: float, v_exc: float, gain_resistor: float) -> float:
    """Resistance of the EC cell from the settled half-bridge voltages.

    The gain resistor and the cell form a divider across the excitation
    voltage; the cell amplitude is the mean of the two half-cycle readings.

    Returns:
        Cell resistance in ohms, or math.inf when no current flows

    Raises:
        SignalOutOfRange: if the cell shows no voltage at all
    """
    v_cell = (abs(v_p) + abs(v_m)) / 2.0
    if v_cell <= 0:
        raise SignalOutOfRange(f"No EC cell voltage (v+={v_p}, v-={v_m})")
    if v_cell >= v_exc:
        return math.inf
    return gain_resistor * v_cell / (v_exc - v_cell)


def conductivity_from_resistance(resistance: float, cell_constant: float = 1.0) -> float:
    """Convert cell resistance (ohms) to conductivity in µS/cm."""
    if resistance <= 0:
        raise ValueError(f"Cell resistance must be positive, got {resistance}")
    if math.isinf(resistance):
        return 0.0
    return cell_constant / resistance * 1e6


def ec_from_voltages(v_p: float, v_m: float, v_exc: float, gain: int,
                     temp_c: Optional[float] = None, cell_constant: float = 1.0) -> float:
    """Conductivity in µS/cm, compensated to 25°C.

    Args:
        v_p: Positive half-cycle voltage
        v_m: Negative half-cycle voltage
        v_exc: Excitation voltage applied during the reading
        gain: Gain rung (2..8) active during the reading
        temp_c: Solution temperature; no compensation when None
        cell_constant: Probe cell constant K in 1/cm
    """
    resistance = cell_resistance(v_p, v_m, v_exc, EC_GAIN_RESISTORS[gain])
    ec = conductivity_from_resistance(resistance, cell_constant)
    return compensate_temperature(ec, temp_c)


def validate_sensor_range(value: float, min_val: float, max_val: float) -> bool:
    """Validate that a sensor reading is within expected range.

    Args:
        value: Sensor reading to validate
        min_val: Minimum expected value
        max_val: Maximum expected value

    Returns:
        True if value is within range, False otherwise
    """
    if value is None:
        return False

    if not isinstance(value, (int, float)):
        return False

    if math.isnan(value) or math.isinf(value):
        return False

    return min_val <= value <= max_val
