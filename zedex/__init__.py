"""
Local mirror and caching proxy for the Zed extension registry and release API.
"""

__version__ = "0.1.0"
