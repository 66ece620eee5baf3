"""
A set of tools for validating Cerberus-based schemas
"""

from .validator import STMDCerberusValidator
