"""Application package initialization.

Having this file ensures the 'app' directory is recognized as a standard
Python package during test discovery and when running under Poetry.
It also provides a single place to expose high-level exports if needed.
"""

__all__: list[str] = []
