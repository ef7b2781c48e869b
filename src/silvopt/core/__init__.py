"""Core utilities shared across silvopt modules."""

from .errors import PoolCapacityError, SilvoptValueError

__all__ = ["PoolCapacityError", "SilvoptValueError"]
