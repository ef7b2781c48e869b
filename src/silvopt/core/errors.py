"""Common silvopt-specific exceptions."""


class SilvoptValueError(ValueError):
    """Raised when silvopt detects an invalid argument, period, or array length."""


class PoolCapacityError(SilvoptValueError):
    """Raised when solution pools in one silvicultural space disagree on capacity."""


__all__ = ["PoolCapacityError", "SilvoptValueError"]
