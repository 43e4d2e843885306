"""Utility modules for the ETL kernel."""

from etl_kernel.utils.hashing import canonical_json, fingerprint, to_json_value

__all__ = [
    "canonical_json",
    "fingerprint",
    "to_json_value",
]
