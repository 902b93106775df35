"""
Core exceptions for the planrunner service.
"""


class PlanRunnerException(Exception):
    """Base exception for all planrunner errors"""
    pass


class ValidationError(PlanRunnerException):
    """Validation error"""
    pass


class ConfigurationError(PlanRunnerException):
    """Configuration error"""
    pass


class StoreError(PlanRunnerException):
    """Plan store read/write failure"""
    pass
