"""
pausekeeper - pauses reconciliation of healthy, stable managed resources.
"""

__version__ = "0.1.0"
