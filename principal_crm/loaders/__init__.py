"""Data sources for the principal CRM dashboard: REST views and file exports."""

from .api import ApiResponse, PrincipalActivityApi
from .exports import VIEW_SIGNATURES, load_view_export

__all__ = [
    "ApiResponse",
    "PrincipalActivityApi",
    "VIEW_SIGNATURES",
    "load_view_export",
]
