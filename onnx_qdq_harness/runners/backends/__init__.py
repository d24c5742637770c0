from .base import Backend, PreparedHandle
from .ort_backend import OrtBackend, parse_profile_assignments

__all__ = [
    "Backend",
    "PreparedHandle",
    "OrtBackend",
    "parse_profile_assignments",
]
