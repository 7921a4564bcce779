"""
adminer - quota-gated job admission and billing reconciliation service
"""

__version__ = "0.1.0"
