"""
Template Store: read access to templates, regions and findings.

Reads return bundles with regions in explicit sort order and findings in
insertion order. Archived templates are never returned. Every mutation of
the in-memory store invalidates the grounding-context cache of the affected
exam types before it returns.
"""

import uuid
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from radlaudo.models.template_model import (
    Finding,
    Region,
    Template,
    TemplateBundle,
    TemplateStatus,
    clone_bundle,
    validate_finding,
    validate_regions,
)
from radlaudo.services.template_loader import load_template_directory
from radlaudo.utils.cache import CacheManager, cache_manager
from radlaudo.utils.logging import get_logger, get_compliance_logger

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()

PUBLIC_OWNERSHIP = {"admin", "community"}


class TemplateNotFoundError(KeyError):
    """Raised when a template id is unknown or archived."""


def is_visible(template: Template, user_id: str, granted: Set[str]) -> bool:
    """Own, community/admin or explicitly granted; drafts only for their owner."""
    if template.is_archived:
        return False
    if template.owner_user_id == user_id:
        return True
    if template.status == TemplateStatus.DRAFT:
        return False
    return template.ownership in PUBLIC_OWNERSHIP or (template.id in granted)


class TemplateStore:
    """Read interface consumed by the generation pipeline."""

    # False when mutations happen outside this process and cannot bump versions
    cacheable = True

    async def list_bundles(
        self, user_id: str, exam_type: Optional[str] = None
    ) -> List[TemplateBundle]:
        raise NotImplementedError


class InMemoryTemplateStore(TemplateStore):
    def __init__(self, cache: Optional[CacheManager] = None):
        self.cache = cache or cache_manager
        self._templates: Dict[str, Template] = {}
        self._regions: Dict[str, List[Region]] = {}
        self._findings: Dict[str, List[Finding]] = {}
        self._grants: Dict[str, Set[str]] = {}

    @classmethod
    def from_bundles(
        cls, bundles: List[TemplateBundle], cache: Optional[CacheManager] = None
    ) -> "InMemoryTemplateStore":
        store = cls(cache=cache)
        for bundle in bundles:
            template_id = store.add_template(bundle.template, bundle.regions)
            for finding in bundle.findings:
                store.add_finding(template_id, finding)
        return store

    @classmethod
    def from_directory(
        cls, root: Union[str, Path], cache: Optional[CacheManager] = None
    ) -> "InMemoryTemplateStore":
        return cls.from_bundles(load_template_directory(root), cache=cache)

    async def list_bundles(
        self, user_id: str, exam_type: Optional[str] = None
    ) -> List[TemplateBundle]:
        granted = self._grants.get(user_id, set())
        bundles = []
        for template_id, template in self._templates.items():
            if exam_type and template.exam_type != exam_type:
                continue
            if not is_visible(template, user_id, granted):
                continue
            bundles.append(self._bundle(template_id))
        return bundles

    def get_bundle(self, template_id: str) -> TemplateBundle:
        template = self._templates.get(template_id)
        if template is None or template.is_archived:
            raise TemplateNotFoundError(template_id)
        return self._bundle(template_id)

    def _bundle(self, template_id: str) -> TemplateBundle:
        return TemplateBundle(
            template=self._templates[template_id],
            regions=sorted(self._regions[template_id], key=lambda r: r.sort_order),
            findings=list(self._findings[template_id]),
        )

    def _require(self, template_id: str) -> Template:
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    # Mutations

    def add_template(
        self, template: Template, regions: Optional[List[Region]] = None
    ) -> str:
        regions = list(regions or [])
        validate_regions(regions)

        template_id = template.id or str(uuid.uuid4())
        self._templates[template_id] = replace(template, id=template_id)
        self._regions[template_id] = [replace(r, template_id=template_id) for r in regions]
        self._findings[template_id] = []

        self.cache.invalidate(template.exam_type)
        return template_id

    def add_region(self, template_id: str, region: Region) -> None:
        template = self._require(template_id)
        regions = self._regions[template_id] + [replace(region, template_id=template_id)]
        validate_regions(regions)
        self._regions[template_id] = regions
        self.cache.invalidate(template.exam_type)

    def add_finding(self, template_id: str, finding: Finding) -> None:
        """Validated against the template's regions before it is stored."""
        template = self._require(template_id)
        finding = replace(finding, template_id=template_id)
        validate_finding(finding, self._regions[template_id])
        self._findings[template_id].append(finding)
        self.cache.invalidate(template.exam_type)

    def update_template(self, template_id: str, **changes) -> Template:
        previous = self._require(template_id)
        updated = replace(previous, **changes)
        self._templates[template_id] = updated
        # Moving a template between exam types changes both blocks
        self.cache.invalidate(previous.exam_type, updated.exam_type)
        return updated

    def clone_template(self, template_id: str, owner_user_id: str) -> str:
        source = self.get_bundle(template_id)
        new_id = str(uuid.uuid4())
        copy = clone_bundle(source, new_id=new_id, owner_user_id=owner_user_id)

        self._templates[new_id] = copy.template
        self._regions[new_id] = copy.regions
        self._findings[new_id] = copy.findings
        self.cache.invalidate(copy.template.exam_type)

        compliance_logger.log_data_access(
            resource_type="template",
            resource_id=new_id,
            user_id=owner_user_id,
            operation="clone",
            success=True,
            parent_template_id=template_id,
        )
        return new_id

    def archive_template(self, template_id: str) -> None:
        """Soft delete; the record stays for clones that reference it."""
        template = self._require(template_id)
        self._templates[template_id] = replace(template, status=TemplateStatus.ARCHIVED)
        self.cache.invalidate(template.exam_type)

    def grant_access(self, user_id: str, template_id: str) -> None:
        template = self._require(template_id)
        self._grants.setdefault(user_id, set()).add(template_id)
        self.cache.invalidate(template.exam_type)


class SupabaseTemplateStore(TemplateStore):
    """Reads the template tables maintained by the template editing service."""

    cacheable = False

    def __init__(self, storage):
        self.storage = storage

    async def list_bundles(
        self, user_id: str, exam_type: Optional[str] = None
    ) -> List[TemplateBundle]:
        granted = set(await self.storage.fetch_access_grants(user_id))
        rows = await self.storage.fetch_templates(user_id, exam_type)
        templates = [Template.from_dict(row) for row in rows]
        templates = [t for t in templates if is_visible(t, user_id, granted)]

        ids = [t.id for t in templates]
        regions: Dict[str, List[Region]] = {template_id: [] for template_id in ids}
        findings: Dict[str, List[Finding]] = {template_id: [] for template_id in ids}

        for row in await self.storage.fetch_regions(ids):
            region = Region.from_dict(row)
            regions.setdefault(region.template_id, []).append(region)
        for row in await self.storage.fetch_findings(ids):
            finding = Finding.from_dict(row)
            findings.setdefault(finding.template_id, []).append(finding)

        return [
            TemplateBundle(
                template=t,
                regions=sorted(regions[t.id], key=lambda r: r.sort_order),
                findings=findings[t.id],
            )
            for t in templates
        ]
