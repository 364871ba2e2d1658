"""
Recursive (Kalman) filter for channel readings.

Two-state constant-rate model: the state is [value, rate], observations are
the value only. A reading whose distance from the previously reported value
exceeds the jump threshold resets the filter to its prior, so real step
changes (probe moved to a new solution) show up immediately.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def discrete_white_noise(dt: float, var: float) -> np.ndarray:
    """Process noise for a piecewise-constant white acceleration model."""
    return var * np.array([
        [dt ** 4 / 4.0, dt ** 3 / 2.0],
        [dt ** 3 / 2.0, dt ** 2],
    ])


class RecursiveFilter:
    """
    @param dt Time between readings, in seconds.
    @param measurement_std Observation noise standard deviation (quantity units).
    @param jump_threshold Distance from the last reported value that resets the
        filter (quantity units).
    @param initial Prior value; also the first reported value.
    @param process_std Process noise standard deviation; defaults to a tenth
        of the measurement noise.
    """

    def __init__(self, dt, measurement_std, jump_threshold, initial=0.0, process_std=None):
        self.dt = dt
        self.jump_threshold = jump_threshold
        self.initial = initial

        self.F = np.array([[1.0, dt], [0.0, 1.0]])
        self.H = np.array([[1.0, 0.0]])
        self.R = np.array([[measurement_std ** 2]])
        if process_std is None:
            process_std = measurement_std / 10.0
        self.Q = discrete_white_noise(dt, process_std ** 2)
        # Wide prior: the first update after a reset lands on the measurement.
        self.prior_var = (100.0 * measurement_std) ** 2

        self.resets = 0
        self.reset()

    def reset(self):
        """Re-initialize the state estimate and covariance to the prior."""
        self.x = np.array([self.initial, 0.0])
        self.P = np.eye(2) * self.prior_var
        self.last_reported = self.initial

    @property
    def value(self) -> float:
        return float(self.x[0])

    @property
    def rate(self) -> float:
        return float(self.x[1])

    def predict(self):
        """Advance the estimate one time step with no new information."""
        self.x = self.F @ self.x
        self.P = self.F @ self.P @ self.F.T + self.Q

    def update(self, z: float) -> bool:
        """Correct the estimate with one observation.

        Returns:
            True if the observation was a discrete jump and reset the filter.
        """
        jumped = abs(z - self.last_reported) > self.jump_threshold
        if jumped:
            logger.debug("Jump %.4f -> %.4f exceeds %.4f; filter reset",
                         self.last_reported, z, self.jump_threshold)
            self.reset()
            self.resets += 1

        y = z - self.H @ self.x
        S = self.H @ self.P @ self.H.T + self.R
        K = self.P @ self.H.T @ np.linalg.inv(S)
        self.x = self.x + (K @ y)
        self.P = (np.eye(2) - K @ self.H) @ self.P

        self.last_reported = self.value
        return jumped

    def step(self, z: float) -> float:
        """Predict, update with `z`, and return the filtered value."""
        self.predict()
        self.update(z)
        return self.value
