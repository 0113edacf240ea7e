"""
Utils package
"""
from .data_utils import (
    get_request_data,
    pick,
    parse_bool,
    parse_date_safe,
    parse_positive_int,
    serialize_photo,
    serialize_record,
)

__all__ = [
    'get_request_data',
    'pick',
    'parse_bool',
    'parse_date_safe',
    'parse_positive_int',
    'serialize_photo',
    'serialize_record',
]
