# pikotunnel/core/errors.py
"""
Domain errors raised by the relay core
The API layer maps them to HTTP status codes
"""


class RelayError(Exception):
    """Base class for relay errors"""
    error_code = "RELAY_ERROR"


class ValidationError(RelayError, ValueError):
    """Request rejected before any network side effect (self pair, missing peer)"""
    error_code = "VALIDATION_ERROR"


class NotFoundError(RelayError, LookupError):
    """Referenced record does not exist"""
    error_code = "NOT_FOUND"


class SubnetExhaustedError(RelayError, RuntimeError):
    """No free address left in the tunnel subnet"""
    error_code = "SUBNET_EXHAUSTED"
