"""Constants shared across the thing-access runtime."""

from __future__ import annotations

from typing import Final

# Gateway services reachable over the edge bus.
DIMU_SERVICE_NAME: Final[str] = "iot.dmp.dimu"
CONFIG_SERVICE_NAME: Final[str] = "iot.dmp.configmanager"
SUBSCRIBE_DESTINATION: Final[str] = "iot.dmp.subscribe"

MODULE_SERVICE_PREFIX: Final[str] = "iot.driver."
DEVICE_SERVICE_PREFIX: Final[str] = "iot.device.id"

DEFAULT_BUS_ADDRESS: Final[str] = "unix:path=/tmp/var/run/mbusd/mbusd_socket"

# get_config keys
CONFIG_KEY_PREFIX: Final[str] = "gw_"
DRIVER_CONFIG_KEY_FORMAT: Final[str] = CONFIG_KEY_PREFIX + "driverconfig_{module}"
TSL_KEY_FORMAT: Final[str] = CONFIG_KEY_PREFIX + "TSL_{product_key}"
TSL_EXT_INFO_KEY_FORMAT: Final[str] = CONFIG_KEY_PREFIX + "TSL_config_{product_key}"

# Bus RequestName flags/replies (freedesktop numbering).
NAME_FLAG_DO_NOT_QUEUE: Final[int] = 0x4
NAME_REPLY_PRIMARY_OWNER: Final[int] = 1
NAME_REPLY_IN_QUEUE: Final[int] = 2
NAME_REPLY_EXISTS: Final[int] = 3
NAME_REPLY_ALREADY_OWNER: Final[int] = 4

# Inbound service names with dedicated callbacks.
SERVICE_GET_PROPERTIES: Final[str] = "get"
SERVICE_SET_PROPERTIES: Final[str] = "set"

PROPERTIES_CHANGED_SIGNAL: Final[str] = "propertiesChanged"
CONFIG_CHANGES_EVENT: Final[str] = "changes"

# Result codes visible to callbacks.
RESULT_SUCCESS: Final[int] = 0
RESULT_FAILURE: Final[int] = -3

ERROR_PROPERTY_NOT_EXIST: Final[int] = 109002
ERROR_PROPERTY_READ_ONLY: Final[int] = 109003
ERROR_PROPERTY_WRITE_ONLY: Final[int] = 109004
ERROR_SERVICE_NOT_EXIST: Final[int] = 109005
ERROR_SERVICE_INVALID_PARAM: Final[int] = 109006
ERROR_INVALID_JSON: Final[int] = 109007
ERROR_INVALID_TYPE: Final[int] = 109008

ERROR_UNKNOWN: Final[int] = 100000
ERROR_TIMEOUT: Final[int] = 100006
ERROR_PARAM_RANGE_OVERFLOW: Final[int] = 100007
ERROR_SERVICE_UNREACHABLE: Final[int] = 100008
ERROR_FILE_NOT_EXIST: Final[int] = 100009

DEFAULT_RECONNECT_CODES: Final[frozenset[int]] = frozenset({ERROR_SERVICE_UNREACHABLE})

# Runtime defaults
DEFAULT_DEBUG_LOGGING: Final[bool] = False
DEFAULT_AUTO_FINALIZE: Final[bool] = True
DEFAULT_METRICS_ENABLED: Final[bool] = False
DEFAULT_METRICS_HOST: Final[str] = "127.0.0.1"
DEFAULT_METRICS_PORT: Final[int] = 9131
DEFAULT_RETRY_MIN_BACKOFF: Final[float] = 1.0
DEFAULT_RETRY_MAX_BACKOFF: Final[float] = 30.0

ENV_FUNCTION_ID: Final[str] = "FUNCTION_ID"
ENV_BUS_ADDRESS: Final[str] = "THING_ACCESS_BUS_ADDRESS"
ENV_DEBUG: Final[str] = "THING_ACCESS_DEBUG"
ENV_AUTO_FINALIZE: Final[str] = "THING_ACCESS_AUTO_FINALIZE"
ENV_RECONNECT_CODES: Final[str] = "THING_ACCESS_RECONNECT_CODES"
ENV_METRICS_ENABLED: Final[str] = "THING_ACCESS_METRICS_ENABLED"
ENV_METRICS_HOST: Final[str] = "THING_ACCESS_METRICS_HOST"
ENV_METRICS_PORT: Final[str] = "THING_ACCESS_METRICS_PORT"
ENV_RETRY_MIN_BACKOFF: Final[str] = "THING_ACCESS_RETRY_MIN_BACKOFF"
ENV_RETRY_MAX_BACKOFF: Final[str] = "THING_ACCESS_RETRY_MAX_BACKOFF"
ENV_LOG_STREAM: Final[str] = "THING_ACCESS_LOG_STREAM"
