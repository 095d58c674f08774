"""
carecalendar - availability and calendar reconciliation for a healthcare marketplace.
"""

__version__ = "0.1.0"
