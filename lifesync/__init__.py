"""
Integration synchronization service for the life OS.
"""

__version__ = "1.0.0"
