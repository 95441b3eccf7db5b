"""
Utils package
"""
from .http_utils import (
    capture_error_response,
    get_json_body,
    status_for
)

__all__ = [
    'capture_error_response',
    'get_json_body',
    'status_for'
]
