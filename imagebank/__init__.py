"""
Semantic image bank: a vector-indexed cache of stock-photo search results
in front of paid image-search providers.
"""

__version__ = "1.0.0"
