"""Utility modules for radlaudo."""

from radlaudo.utils.config import settings, ModelConfig, LatencyConfig
from radlaudo.utils.logging import (
    get_logger,
    get_latency_logger,
    get_compliance_logger,
    monitor_latency,
)
from radlaudo.utils.cache import CacheManager, ContextVersionRegistry

__all__ = [
    "settings",
    "ModelConfig",
    "LatencyConfig",
    "get_logger",
    "get_latency_logger",
    "get_compliance_logger",
    "monitor_latency",
    "CacheManager",
    "ContextVersionRegistry",
]
