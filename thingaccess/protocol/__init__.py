"""Wire-level helpers: bus names, config keys and JSON envelopes."""

from .envelopes import ResultEnvelope, decode_json, encode_json, unwrap_result
from .names import device_service_name, module_service_name, object_path

__all__ = [
    "ResultEnvelope",
    "decode_json",
    "device_service_name",
    "encode_json",
    "module_service_name",
    "object_path",
    "unwrap_result",
]
