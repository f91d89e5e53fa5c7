"""
CardLedger - card identification with a consensus-moderated catalog
"""

__version__ = "0.1.0"
