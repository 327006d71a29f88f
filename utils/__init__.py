"""
Utility modules for the valuation pipeline.
"""

from .formatting import format_currency, format_delta, format_percent
from .config import Config

__all__ = ["format_currency", "format_delta", "format_percent", "Config"]
