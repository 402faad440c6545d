"""
Core modules for the account dashboard.

This package contains the pricing catalog, cost calculation and
account cost aggregation.
"""
