"""
Sage Codex - a conversational guide for building adventures, one stage at a time.
"""

__version__ = "0.1.0"
