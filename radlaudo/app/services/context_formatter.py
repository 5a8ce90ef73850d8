"""Serialization of templates and findings into the prompt grounding block."""

from __future__ import annotations

from typing import List, Optional

from ...models.template_model import Finding, RuleKind, TemplateBundle
from ...services.template_store import TemplateStore
from ...utils.cache import CacheManager, cache_manager
from ...utils.logging import get_logger

logger = get_logger(__name__)

TEMPLATES_HEADER = "## MÁSCARAS DISPONÍVEIS"
FINDINGS_HEADER = "## ACHADOS DISPONÍVEIS"
CONTEXT_SCOPE = "grounding"


def _fenced(body: str) -> str:
    return "```\n" + body.strip() + "\n```"


def _yes_no(value: bool) -> str:
    return "sim" if value else "não"


def _format_template(bundle: TemplateBundle) -> str:
    template = bundle.template
    lines = [
        f"### {template.slug}",
        f"- Nome: {template.name}",
        f"- Tipo: {template.exam_type}",
    ]
    if template.exam_subtype:
        lines.append(f"- Subtipo: {template.exam_subtype}")
    lines.append(f"- Contraste: {template.contrast.value}")
    lines.append(f"- Urgência padrão: {_yes_no(template.urgency_default)}")
    if template.keywords:
        lines.append(f"- Palavras-chave: {', '.join(template.keywords)}")
    if bundle.regions:
        lines.append("- Regiões:")
        for region in bundle.regions:
            optional = " (opcional)" if region.is_optional else ""
            lines.append(f"  - {region.slug}: {region.name}{optional}")
    lines.append("")
    lines.append(_fenced(template.body_content))
    return "\n".join(lines)


def _format_finding(bundle: TemplateBundle, finding: Finding) -> str:
    region = bundle.region_for(finding)
    if region is None:
        region_line = f"- Região: {finding.region_slug} (região não encontrada na máscara)"
    else:
        region_line = f"- Região: {region.slug} ({region.name})"

    lines = [
        f"### {bundle.template.slug}/{finding.slug}",
        f"- Nome: {finding.name}",
        region_line,
        f"- Palavras-chave: {', '.join(finding.keywords)}",
    ]

    required = finding.fields_with_rule(RuleKind.REQUIRED)
    optional = finding.fields_with_rule(RuleKind.OPTIONAL)
    conditional = finding.fields_with_rule(RuleKind.CONDITIONAL)
    if required:
        lines.append(f"- Campos obrigatórios: {', '.join(required)}")
    if optional:
        lines.append(f"- Campos opcionais: {', '.join(optional)}")
    if conditional:
        described = [
            f"{name} (se {finding.field_rules[name].condition})" for name in conditional
        ]
        lines.append(f"- Campos condicionais: {', '.join(described)}")

    defaults = [
        f"{name}={rule.default}"
        for name, rule in finding.field_rules.items()
        if rule.default is not None
    ]
    if defaults:
        lines.append(f"- Valores padrão: {', '.join(defaults)}")
    if finding.measure_default:
        lines.append(f"- Medida padrão: {finding.measure_default}")

    lines.append("")
    lines.append(_fenced(finding.body_content))
    return "\n".join(lines)


def format_grounding_context(bundles: List[TemplateBundle]) -> str:
    """Render templates then findings, in the order given.

    Output depends only on the input, so unchanged bundles give a
    byte-identical block. An empty list still yields both headers.
    """
    sections = [TEMPLATES_HEADER]
    for bundle in bundles:
        sections.append(_format_template(bundle))

    sections.append(FINDINGS_HEADER)
    for bundle in bundles:
        for finding in bundle.findings:
            sections.append(_format_finding(bundle, finding))

    return "\n\n".join(sections) + "\n"


class GroundingContextBuilder:
    """Reads visible templates from the store and caches the rendered block.

    Entries are keyed by (user, exam type) and tagged with the exam type's
    version counter; a store mutation bumps the counter and the next build
    re-renders.
    """

    def __init__(self, store: TemplateStore, cache: Optional[CacheManager] = None):
        self.store = store
        self.cache = cache or cache_manager

    async def build(self, user_id: str, exam_type: Optional[str] = None) -> str:
        if not self.store.cacheable:
            bundles = await self.store.list_bundles(user_id, exam_type)
            return format_grounding_context(bundles)

        key = self.cache.make_key(f"{CONTEXT_SCOPE}:{user_id}", exam_type)
        cached = self.cache.get(key, exam_type)
        if cached is not None:
            return cached

        # Version is read before the store so a concurrent mutation leaves
        # this entry stale instead of hiding the change.
        version = self.cache.registry.version(exam_type)
        bundles = await self.store.list_bundles(user_id, exam_type)
        context = format_grounding_context(bundles)
        self.cache.set(key, context, version)

        logger.info(
            "Grounding context built",
            extra={
                "extra_fields": {
                    "exam_type": exam_type,
                    "templates": len(bundles),
                    "findings": sum(len(b.findings) for b in bundles),
                    "context_chars": len(context),
                }
            },
        )
        return context
