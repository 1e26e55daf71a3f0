"""
BuildKit trace decoding.
"""

from .translator import decode_trace_payload, translate_status

__all__ = ["decode_trace_payload", "translate_status"]
