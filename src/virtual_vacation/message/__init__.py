"""Inbound message handling.

Header scanning with early-exit suppression rules, and address
normalization for envelope and header addresses.
"""

from .addresses import check_and_clean_from_address, is_valid_email, split_addresses, strip_address
from .parsing import iter_header_lines, read_headers

__all__ = [
    "check_and_clean_from_address",
    "is_valid_email",
    "iter_header_lines",
    "read_headers",
    "split_addresses",
    "strip_address",
]
