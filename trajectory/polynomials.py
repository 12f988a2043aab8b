"""
Polynomials in time used to realize candidate trajectories.

QuinticPolynomial fixes position/velocity/acceleration at both ends (lateral
motion); QuarticPolynomial leaves the end position free and fixes end
velocity/acceleration (longitudinal velocity keeping).
"""

import numpy as np


class QuinticPolynomial:
    """
    p(t) = a0 + a1*t + a2*t^2 + a3*t^3 + a4*t^4 + a5*t^5
    """

    def __init__(self, xs: float, vxs: float, axs: float,
                 xe: float, vxe: float, axe: float, T: float):
        if T <= 0.0:
            raise ValueError(f"Polynomial horizon must be positive, got {T}")
        self.T = float(T)
        self.a0 = float(xs)
        self.a1 = float(vxs)
        self.a2 = float(axs) / 2.0

        A = np.array([[T ** 3, T ** 4, T ** 5],
                      [3 * T ** 2, 4 * T ** 3, 5 * T ** 4],
                      [6 * T, 12 * T ** 2, 20 * T ** 3]])
        b = np.array([xe - self.a0 - self.a1 * T - self.a2 * T ** 2,
                      vxe - self.a1 - 2 * self.a2 * T,
                      axe - 2 * self.a2])
        self.a3, self.a4, self.a5 = (float(v) for v in np.linalg.solve(A, b))

    @property
    def coefficients(self) -> np.ndarray:
        return np.array([self.a0, self.a1, self.a2, self.a3, self.a4, self.a5])

    def calc_point(self, t):
        return self.a0 + self.a1 * t + self.a2 * t ** 2 + \
            self.a3 * t ** 3 + self.a4 * t ** 4 + self.a5 * t ** 5

    def calc_first_derivative(self, t):
        return self.a1 + 2 * self.a2 * t + \
            3 * self.a3 * t ** 2 + 4 * self.a4 * t ** 3 + 5 * self.a5 * t ** 4

    def calc_second_derivative(self, t):
        return 2 * self.a2 + 6 * self.a3 * t + 12 * self.a4 * t ** 2 + 20 * self.a5 * t ** 3

    def calc_third_derivative(self, t):
        return 6 * self.a3 + 24 * self.a4 * t + 60 * self.a5 * t ** 2


class QuarticPolynomial:
    """
    p(t) = a0 + a1*t + a2*t^2 + a3*t^3 + a4*t^4
    """

    def __init__(self, xs: float, vxs: float, axs: float,
                 vxe: float, axe: float, T: float):
        if T <= 0.0:
            raise ValueError(f"Polynomial horizon must be positive, got {T}")
        self.T = float(T)
        self.a0 = float(xs)
        self.a1 = float(vxs)
        self.a2 = float(axs) / 2.0

        A = np.array([[3 * T ** 2, 4 * T ** 3],
                      [6 * T, 12 * T ** 2]])
        b = np.array([vxe - self.a1 - 2 * self.a2 * T,
                      axe - 2 * self.a2])
        self.a3, self.a4 = (float(v) for v in np.linalg.solve(A, b))

    @property
    def coefficients(self) -> np.ndarray:
        return np.array([self.a0, self.a1, self.a2, self.a3, self.a4])

    def calc_point(self, t):
        return self.a0 + self.a1 * t + self.a2 * t ** 2 + \
            self.a3 * t ** 3 + self.a4 * t ** 4

    def calc_first_derivative(self, t):
        return self.a1 + 2 * self.a2 * t + 3 * self.a3 * t ** 2 + 4 * self.a4 * t ** 3

    def calc_second_derivative(self, t):
        return 2 * self.a2 + 6 * self.a3 * t + 12 * self.a4 * t ** 2

    def calc_third_derivative(self, t):
        return 6 * self.a3 + 24 * self.a4 * t
