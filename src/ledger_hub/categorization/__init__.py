"""
Category taxonomy, mapping table and resolution.
"""

from .mapper import CategoryMapper
from .mapping import CategoryMappingTable, InMemoryMappingStore, MappingStore
from .resolver import CategoryResolver, Resolution, ResolutionSource
from .taxonomy import (
    KEYWORD_RULES,
    STANDARD_NATIVE_NAMES,
    TAXONOMY_VERSION,
    keyword_category,
)

__all__ = [
    "CategoryMapper",
    "CategoryMappingTable",
    "CategoryResolver",
    "InMemoryMappingStore",
    "KEYWORD_RULES",
    "MappingStore",
    "Resolution",
    "ResolutionSource",
    "STANDARD_NATIVE_NAMES",
    "TAXONOMY_VERSION",
    "keyword_category",
]
