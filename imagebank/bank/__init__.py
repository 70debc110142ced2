"""
Image bank: cached provider images with caption-embedding search.
"""

from .types import (
    Attribution,
    BankEntry,
    BankHit,
    BankListResult,
    BankSearchResult,
    ImageMetadata,
    Review,
    SearchTest,
    VectorSlots,
)
