"""
Account dashboard.

Usage, cost and pricing statistics for LLM provider accounts and API keys.
"""

__version__ = "0.1.0"
