"""
Vault account model and lifecycle rules.

Modules:
- layout: fixed-layout account decoder (current schema only)
- lifecycle: pure phase classifier shared with any presentation layer
- eligibility: release / close candidate filters
- instructions: instruction tags and account lists for release and close
- program_errors: names for the program's custom error codes
"""

__all__ = [
    "eligibility",
    "instructions",
    "layout",
    "lifecycle",
    "program_errors",
]
