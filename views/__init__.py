# views/__init__.py
from .connections import (
    format_command_result,
    format_profile_line,
    format_record,
    format_search_results,
    format_view,
)
from .safe import html_safe


__all__ = [
    "format_command_result",
    "format_profile_line",
    "format_record",
    "format_search_results",
    "format_view",
    "html_safe",
]
