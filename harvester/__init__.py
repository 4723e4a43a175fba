"""
Resumable email harvesting from growing text files.
"""

__version__ = "1.0.0"
