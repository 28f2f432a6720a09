"""Thing access runtime for edge gateway device drivers."""

__version__ = "1.0.0"

from .client import ThingAccessClient, create_session, destroy, get_config
from .const import (
    ERROR_FILE_NOT_EXIST,
    ERROR_INVALID_JSON,
    ERROR_INVALID_TYPE,
    ERROR_PARAM_RANGE_OVERFLOW,
    ERROR_PROPERTY_NOT_EXIST,
    ERROR_PROPERTY_READ_ONLY,
    ERROR_PROPERTY_WRITE_ONLY,
    ERROR_SERVICE_INVALID_PARAM,
    ERROR_SERVICE_NOT_EXIST,
    ERROR_SERVICE_UNREACHABLE,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    RESULT_FAILURE,
    RESULT_SUCCESS,
)
from .errors import ErrorKind, PreconditionError, ThingAccessError
from .services.driver_config import DriverConfigManager
from .services.session import Session
from .thing_info import DriverConfig, ThingInfo

__all__ = [
    "ERROR_FILE_NOT_EXIST",
    "ERROR_INVALID_JSON",
    "ERROR_INVALID_TYPE",
    "ERROR_PARAM_RANGE_OVERFLOW",
    "ERROR_PROPERTY_NOT_EXIST",
    "ERROR_PROPERTY_READ_ONLY",
    "ERROR_PROPERTY_WRITE_ONLY",
    "ERROR_SERVICE_INVALID_PARAM",
    "ERROR_SERVICE_NOT_EXIST",
    "ERROR_SERVICE_UNREACHABLE",
    "ERROR_TIMEOUT",
    "ERROR_UNKNOWN",
    "RESULT_FAILURE",
    "RESULT_SUCCESS",
    "DriverConfig",
    "DriverConfigManager",
    "ErrorKind",
    "PreconditionError",
    "Session",
    "ThingAccessClient",
    "ThingAccessError",
    "ThingInfo",
    "__version__",
    "create_session",
    "destroy",
    "get_config",
]
