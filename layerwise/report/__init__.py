"""Report rendering."""

from .formatters import exit_code, format_json, format_text, to_dict

__all__ = ["exit_code", "format_json", "format_text", "to_dict"]
