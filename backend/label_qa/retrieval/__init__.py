"""Retrieval orchestration components."""

from .dedupe import cap_per_label
from .fusion import dot_product, mmr_diversify, rrf_fuse
from .search import RetrievalService, retrieve_hybrid, retrieve_with_info
from .strategies import Strategy

__all__ = [
    "RetrievalService",
    "retrieve_with_info",
    "retrieve_hybrid",
    "rrf_fuse",
    "mmr_diversify",
    "dot_product",
    "cap_per_label",
    "Strategy",
]
