"""
Storage service for radlaudo.
Handles Supabase Postgres operations (generation log, quota RPC, template
reads) and the report export bucket.
"""

import asyncio
import time
from typing import Dict, Any, Optional, List

from supabase import AsyncClient, acreate_client

from ..utils.config import settings
from ..utils.logging import get_logger, get_compliance_logger, monitor_latency

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()

GENERATIONS_TABLE = "report_generations"
QUOTA_FUNCTION = "consume_report_quota"


class StorageNotConfiguredError(Exception):
    """Raised when Supabase credentials are missing."""


class StorageInitializationError(Exception):
    """Raised when every initialization attempt failed."""


class StorageService:
    """Storage service for Supabase Postgres and bucket operations.

    Initialization is an explicit, idempotent step: the client is created and
    the bucket existence check runs once per successful ``initialize()``.
    A failed attempt leaves the service uninitialized so the next call retries.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        bucket: Optional[str] = None,
        attempts: Optional[int] = None,
        retry_delay: float = 0.5,
        client_factory=acreate_client,
    ):
        self.url = url or settings.supabase_url
        self.key = key or settings.supabase_key
        self.bucket = bucket or settings.storage_bucket
        self.attempts = max(1, attempts or settings.storage_init_attempts)
        self.retry_delay = retry_delay
        self._client_factory = client_factory
        self.supabase: Optional[AsyncClient] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    async def initialize(self) -> None:
        """Create the client and ensure the bucket exists; safe to call repeatedly."""
        if self._initialized:
            return
        if not self.is_configured():
            raise StorageNotConfiguredError("SUPABASE_URL and SUPABASE_KEY are required")

        async with self._init_lock:
            if self._initialized:
                return

            last_error: Optional[Exception] = None
            for attempt in range(1, self.attempts + 1):
                try:
                    if self.supabase is None:
                        self.supabase = await self._client_factory(self.url, self.key)
                    await self._ensure_bucket()
                    self._initialized = True
                    logger.info("Supabase client initialized")
                    return
                except Exception as e:
                    last_error = e
                    logger.warning(
                        f"Storage initialization attempt {attempt}/{self.attempts} failed: {e}"
                    )
                    if attempt < self.attempts and self.retry_delay:
                        await asyncio.sleep(self.retry_delay * attempt)

            logger.error(f"Failed to initialize Supabase client: {last_error}")
            raise StorageInitializationError(str(last_error)) from last_error

    async def _ensure_bucket(self) -> None:
        buckets = await self.supabase.storage.list_buckets()
        names = {getattr(bucket, "name", None) or getattr(bucket, "id", None) for bucket in buckets}
        if self.bucket in names:
            return

        await self.supabase.storage.create_bucket(self.bucket, options={"public": False})
        logger.info(f"Created storage bucket {self.bucket}")

    async def get_client(self) -> AsyncClient:
        await self.initialize()
        return self.supabase

    @monitor_latency("storage_log_generation", "supabase")
    async def log_generation(self, record: Dict[str, Any]) -> None:
        """Insert one row into the generation log."""
        user_id = record.get("user_id", "unknown")
        try:
            client = await self.get_client()
            await client.table(GENERATIONS_TABLE).insert(record).execute()
            compliance_logger.log_data_access(
                resource_type="report_generation",
                resource_id=record.get("input_text_hash") or "unknown",
                user_id=user_id,
                operation="create",
                success=True,
            )
        except Exception as e:
            compliance_logger.log_data_access(
                resource_type="report_generation",
                resource_id="unknown",
                user_id=user_id,
                operation="create",
                success=False,
                error=str(e),
            )
            logger.error(f"Failed to log generation: {e}")
            raise

    @monitor_latency("storage_consume_quota", "supabase")
    async def consume_quota(
        self,
        user_id: str,
        limits: Dict[str, Optional[int]],
        default_limit: int,
        period: str,
    ) -> Dict[str, Any]:
        """Atomically check and increment the monthly counter of a user."""
        try:
            client = await self.get_client()
            result = await client.rpc(
                QUOTA_FUNCTION,
                {
                    "p_user_id": user_id,
                    "p_limits": limits,
                    "p_default_limit": default_limit,
                    "p_period": period,
                },
            ).execute()
        except Exception as e:
            logger.error(f"Failed to consume quota: {e}")
            raise

        rows = result.data or []
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            raise Exception("Quota function returned no rows")
        return rows[0]

    @monitor_latency("storage_fetch_templates", "supabase")
    async def fetch_templates(
        self, user_id: str, exam_type: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Non-archived template rows; visibility is applied by the caller."""
        try:
            client = await self.get_client()
            query = client.table("templates").select("*").neq("status", "archived")
            if exam_type:
                query = query.eq("exam_type", exam_type)
            result = await query.order("created_at").execute()
            compliance_logger.log_data_access(
                resource_type="templates",
                resource_id=exam_type or "all",
                user_id=user_id,
                operation="read",
                success=True,
            )
            return result.data or []
        except Exception as e:
            compliance_logger.log_data_access(
                resource_type="templates",
                resource_id=exam_type or "all",
                user_id=user_id,
                operation="read",
                success=False,
                error=str(e),
            )
            logger.error(f"Failed to fetch templates: {e}")
            raise

    async def fetch_access_grants(self, user_id: str) -> List[str]:
        client = await self.get_client()
        result = await (
            client.table("user_template_access")
            .select("template_id")
            .eq("user_id", user_id)
            .execute()
        )
        return [str(row["template_id"]) for row in result.data or []]

    async def fetch_regions(self, template_ids: List[str]) -> List[Dict[str, Any]]:
        if not template_ids:
            return []
        client = await self.get_client()
        result = await (
            client.table("template_regions")
            .select("*")
            .in_("template_id", template_ids)
            .order("sort_order")
            .execute()
        )
        return result.data or []

    async def fetch_findings(self, template_ids: List[str]) -> List[Dict[str, Any]]:
        if not template_ids:
            return []
        client = await self.get_client()
        result = await (
            client.table("template_findings")
            .select("*")
            .in_("template_id", template_ids)
            .order("created_at")
            .execute()
        )
        return result.data or []

    async def health_check(self) -> Dict[str, Any]:
        """Check storage service health."""
        if not self.is_configured():
            return {
                "service": "storage",
                "status": "not_configured",
                "timestamp": time.time(),
            }

        try:
            client = await self.get_client()

            start_time = time.time()
            await client.table(GENERATIONS_TABLE).select("id").limit(1).execute()
            db_latency = (time.time() - start_time) * 1000

            return {
                "service": "storage",
                "status": "healthy",
                "database": {"status": "healthy", "latency_ms": db_latency},
                "bucket": self.bucket,
                "timestamp": time.time(),
            }

        except Exception as e:
            return {
                "service": "storage",
                "status": "unhealthy",
                "error": str(e),
                "timestamp": time.time(),
            }


# Global storage service instance
storage_service = StorageService()
