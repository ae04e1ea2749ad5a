"""
Identity resolution, ranked search and merge workflow for unified customers.
"""

from .address import AddressInput, address_fingerprint, compute_address_hash, normalize_address
from .merge_service import (
    AmbiguousGroup,
    MergeCandidate,
    MergeResult,
    MergeService,
    MergeValidationError,
)
from .normalize import normalize_email, normalize_phone
from .resolver import IdentityInput, IdentityResolver, ResolutionResult, resolve_identity
from .search import CustomerSearchResponse, CustomerSearchService, RankedCustomer, search_customers
from .search_documents import rebuild_all_search_documents, refresh_search_document

__all__ = [
    "AddressInput",
    "AmbiguousGroup",
    "CustomerSearchResponse",
    "CustomerSearchService",
    "IdentityInput",
    "IdentityResolver",
    "MergeCandidate",
    "MergeResult",
    "MergeService",
    "MergeValidationError",
    "RankedCustomer",
    "ResolutionResult",
    "address_fingerprint",
    "compute_address_hash",
    "normalize_address",
    "normalize_email",
    "normalize_phone",
    "rebuild_all_search_documents",
    "refresh_search_document",
    "resolve_identity",
    "search_customers",
]
