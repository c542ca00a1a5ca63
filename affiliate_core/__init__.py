"""Application package initialization.

Having this file ensures the 'affiliate_core' directory is recognized as a
standard Python package during test discovery and when installed.
It also provides a single place to expose high-level exports if needed.
"""

__all__: list[str] = []
