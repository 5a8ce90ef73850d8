"""Service modules for radlaudo."""

from radlaudo.services.llm_service import llm_service
from radlaudo.services.storage_service import storage_service

__all__ = [
    "llm_service",
    "storage_service",
]
