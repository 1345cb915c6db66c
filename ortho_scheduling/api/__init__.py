"""
API module for the scheduling service
"""

__all__ = []
