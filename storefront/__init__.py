"""Storefront trust-and-access layer"""

__version__ = "1.0.0"
