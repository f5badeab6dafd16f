"""
Report generation for Strata.

This module provides report generators for audit entries:
    - Console: Rich terminal output with the verdict and rule table
    - JSON: Structured data for programmatic consumption
"""

from strata.report.console import generate_console_report, print_entry
from strata.report.json import build_report_dict, entry_to_dict, generate_json_report, load_entry

__all__ = [
    "build_report_dict",
    "entry_to_dict",
    "generate_console_report",
    "generate_json_report",
    "load_entry",
    "print_entry",
]
