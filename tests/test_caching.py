"""
Test version-aware caching of grounding context blocks.
"""

import time

from radlaudo.utils.cache import CacheManager, ContextVersionRegistry
from radlaudo.utils.config import settings


class TestCacheManager:
    """Test cache manager functionality."""

    def test_cache_basic_operations(self):
        """Test basic cache operations."""
        cache = CacheManager()
        version = cache.registry.version("tc-abdome")

        # Test set and get
        cache.set("test_key", "test_value", version, ttl=60)
        assert cache.get("test_key", "tc-abdome") == "test_value"

        # Test non-existent key
        assert cache.get("non_existent", "tc-abdome") is None

        # Test delete
        cache.delete("test_key")
        assert cache.get("test_key", "tc-abdome") is None

    def test_cache_ttl_expiration(self):
        """Test cache TTL expiration."""
        cache = CacheManager()

        # Set with very short TTL
        cache.set("expire_key", "expire_value", version=0, ttl=0.1)
        assert cache.get("expire_key") == "expire_value"

        # Wait for expiration
        time.sleep(0.2)
        assert cache.get("expire_key") is None

    def test_cache_key_generation(self):
        """Test cache key generation."""
        cache = CacheManager()

        assert cache.make_key("grounding:user-1", "tc-abdome") == "grounding:user-1:tc-abdome"
        assert cache.make_key("grounding:user-1") == "grounding:user-1:*"
        assert cache.make_key("grounding:user-1", "tc-abdome") != cache.make_key(
            "grounding:user-2", "tc-abdome"
        )

    def test_cache_stats(self):
        """Test cache statistics."""
        cache = CacheManager()

        cache.set("key1", "value1", version=0, ttl=60)
        cache.set("key2", "value2", version=0, ttl=60)
        cache.get("key1")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["total_entries"] == 2
        assert stats["active_entries"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["enabled"] == settings.enable_caching


class TestVersionInvalidation:
    """Entries go stale when their exam type's version moves."""

    def test_invalidate_makes_entry_stale(self):
        cache = CacheManager()
        version = cache.registry.version("tc-abdome")
        cache.set("grounding:u:tc-abdome", "context", version)

        cache.invalidate("tc-abdome")

        assert cache.get("grounding:u:tc-abdome", "tc-abdome") is None

    def test_other_exam_type_is_unaffected(self):
        cache = CacheManager()
        cache.set("grounding:u:tc-abdome", "context", cache.registry.version("tc-abdome"))

        cache.invalidate("tc-cranio")

        assert cache.get("grounding:u:tc-abdome", "tc-abdome") == "context"

    def test_every_bump_moves_the_global_version(self):
        registry = ContextVersionRegistry()

        registry.bump("tc-abdome")
        registry.bump("tc-cranio", "tc-abdome")

        assert registry.version("tc-abdome") == 2
        assert registry.version("tc-cranio") == 1
        assert registry.version(None) == 2
