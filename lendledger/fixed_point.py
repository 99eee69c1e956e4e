"""
fixed_point.py - Deterministic WAD/RAY Fixed-Point Arithmetic

Integer fixed-point helpers used for every rate, threshold and interest
computation in the ledger. Two bases are in use:

- WAD (1e18): thresholds, percentages and annual rates
- RAY (1e27): per-second compounding factors

Provides:
- Rounded multiply/divide at both precisions (round-half-up)
- Conversion between WAD and RAY
- rpow: x^n at RAY precision by square-and-multiply
- annual_rate_to_ray: annual WAD rate -> per-second RAY factor
- compound: principal grown at an annual rate over elapsed seconds

All functions are pure. Inputs are non-negative ints; every intermediate
product is an exact Python int, so no overflow handling is required.
"""

from .core import (
    WAD, RAY, HALF_WAD, HALF_RAY, WAD_RAY_RATIO, SECONDS_PER_YEAR,
)


# ============================================================================
# ROUNDED MULTIPLY / DIVIDE
# ============================================================================

def ray_mul(a: int, b: int) -> int:
    """a * b / RAY, rounded half up."""
    return (a * b + HALF_RAY) // RAY


def ray_div(a: int, b: int) -> int:
    """
    a * RAY / b, rounded half up.

    Raises:
        ZeroDivisionError: If b is zero
    """
    if b == 0:
        raise ZeroDivisionError("ray_div by zero")
    return (a * RAY + b // 2) // b


def wad_mul(a: int, b: int) -> int:
    """a * b / WAD, rounded half up."""
    return (a * b + HALF_WAD) // WAD


def wad_div(a: int, b: int) -> int:
    """
    a * WAD / b, rounded half up.

    Raises:
        ZeroDivisionError: If b is zero
    """
    if b == 0:
        raise ZeroDivisionError("wad_div by zero")
    return (a * WAD + b // 2) // b


def wad_to_ray(a: int) -> int:
    """Widen a WAD value to RAY precision (exact)."""
    return a * WAD_RAY_RATIO


def ray_to_wad(a: int) -> int:
    """Narrow a RAY value to WAD precision, rounded half up."""
    return (a + WAD_RAY_RATIO // 2) // WAD_RAY_RATIO


# ============================================================================
# EXPONENTIATION AND COMPOUNDING
# ============================================================================

def rpow(x: int, n: int) -> int:
    """
    x^n where x is a RAY value, computed by square-and-multiply.

    Each intermediate product is rounded with ray_mul, so the result is
    identical no matter how often it is recomputed. Runs in O(log n)
    multiplications, which is what makes per-second compounding over long
    periods affordable.

    Raises:
        ValueError: If n is negative
    """
    if n < 0:
        raise ValueError(f"exponent must be non-negative, got {n}")
    z = x if n % 2 else RAY
    n //= 2
    while n:
        x = ray_mul(x, x)
        if n % 2:
            z = ray_mul(z, x)
        n //= 2
    return z


def annual_rate_to_ray(rate: int) -> int:
    """
    Per-second compounding factor for an annual WAD rate.

    factor = RAY + rate / SECONDS_PER_YEAR   (rate widened to RAY, rounded half up)

    Example:
        5% APR -> annual_rate_to_ray(5 * WAD // 100) ~= 1.0000000015855 RAY
    """
    if rate < 0:
        raise ValueError(f"rate cannot be negative, got {rate}")
    per_second = (wad_to_ray(rate) + SECONDS_PER_YEAR // 2) // SECONDS_PER_YEAR
    return RAY + per_second


def accrual_factor(rate: int, elapsed_seconds: int) -> int:
    """RAY growth factor of an annual WAD rate over elapsed_seconds."""
    if elapsed_seconds <= 0:
        return RAY
    return rpow(annual_rate_to_ray(rate), elapsed_seconds)


def compound(principal: int, rate: int, elapsed_seconds: int) -> int:
    """
    Grow principal at an annual WAD rate, compounded every second.

    Returns principal unchanged when nothing has elapsed or principal is zero.
    """
    if principal == 0 or elapsed_seconds <= 0:
        return principal
    return ray_mul(principal, accrual_factor(rate, elapsed_seconds))


# ============================================================================
# PERCENTAGES
# ============================================================================

def percent_change(old: int, new: int) -> int:
    """
    Absolute change from old to new in whole percent (floored).

    Raises:
        ZeroDivisionError: If old is zero
    """
    if old == 0:
        raise ZeroDivisionError("percent_change from zero")
    return abs(new - old) * 100 // old


def bps_of(amount: int, bps: int) -> int:
    """amount * bps / 10_000, floored."""
    return amount * bps // 10_000
