"""
Template seeding from markdown files.

Layout::

    <root>/mascaras/*.md        one template per file
    <root>/achados/**/*.md      findings, linked to every template with the region

Each file starts with a YAML frontmatter block delimited by ``---`` lines.
"""

from pathlib import Path
from typing import Dict, Any, List, Tuple, Union

import yaml

from radlaudo.models.template_model import (
    ContrastMode,
    FieldRule,
    Finding,
    RuleKind,
    Template,
    TemplateBundle,
    parse_regions_from_body,
    slug_to_name,
    validate_finding,
)
from radlaudo.utils.logging import get_logger

logger = get_logger(__name__)

TEMPLATES_SUBDIR = "mascaras"
FINDINGS_SUBDIR = "achados"


class TemplateLoadError(Exception):
    """Raised when a template file cannot be parsed."""


def split_frontmatter(text: str) -> Tuple[Dict[str, Any], str]:
    """Split ``---`` delimited YAML frontmatter from the markdown body."""
    if not text.startswith("---"):
        return {}, text

    lines = text.splitlines(keepends=True)
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            header = "".join(lines[1:index])
            body = "".join(lines[index + 1:])
            data = yaml.safe_load(header) or {}
            if not isinstance(data, dict):
                raise TemplateLoadError("frontmatter must be a mapping")
            return data, body

    raise TemplateLoadError("unterminated frontmatter block")


def contrast_from_slug(slug: str) -> ContrastMode:
    if "sem-contraste" in slug:
        return ContrastMode.WITHOUT
    if "com-contraste" in slug:
        return ContrastMode.WITH
    return ContrastMode.BOTH


def template_from_file(path: Path) -> TemplateBundle:
    data, body = split_frontmatter(path.read_text(encoding="utf-8"))
    slug = path.stem
    body = body.strip()

    contrast = (
        ContrastMode.parse(data["contraste"])
        if data.get("contraste")
        else contrast_from_slug(slug)
    )
    template = Template(
        id=slug,
        slug=slug,
        name=slug_to_name(path.name),
        description=data.get("descricao"),
        exam_type=data.get("tipo") or "-".join(slug.split("-")[:2]),
        exam_subtype=data.get("subtipo"),
        contrast=contrast,
        urgency_default=bool(data.get("urgencia_padrao", True)),
        keywords=[str(k) for k in data.get("palavras_chave") or []],
        body_content=body,
    )

    regions = parse_regions_from_body(body)
    for region in regions:
        region.template_id = template.id

    return TemplateBundle(template=template, regions=regions)


def finding_from_file(path: Path) -> Finding:
    data, body = split_frontmatter(path.read_text(encoding="utf-8"))

    field_rules: Dict[str, FieldRule] = {}
    for name in data.get("requer") or []:
        field_rules[str(name)] = FieldRule(rule=RuleKind.REQUIRED.value)
    for name in data.get("opcional") or []:
        field_rules[str(name)] = FieldRule(rule=RuleKind.OPTIONAL.value)
    for name, condition in (data.get("condicional") or {}).items():
        field_rules[str(name)] = FieldRule(
            rule=RuleKind.CONDITIONAL.value, condition=str(condition)
        )
    for name, default in (data.get("padroes") or {}).items():
        if str(name) in field_rules:
            field_rules[str(name)].default = str(default)

    return Finding(
        slug=path.stem,
        name=slug_to_name(path.name),
        region_slug=data.get("regiao") or path.parent.name,
        keywords=[str(k) for k in data.get("palavras_chave") or []],
        body_content=body.strip(),
        field_rules=field_rules,
        measure_default=data.get("medida_default"),
    )


def load_template_directory(root: Union[str, Path]) -> List[TemplateBundle]:
    """Load every template and link findings to templates that have their region.

    Templates come back sorted by file name; findings keep file-name order
    within each template. Findings whose region matches no template are
    skipped with a warning.
    """
    root = Path(root)
    templates_dir = root / TEMPLATES_SUBDIR
    findings_dir = root / FINDINGS_SUBDIR

    bundles: List[TemplateBundle] = []
    if templates_dir.is_dir():
        for path in sorted(templates_dir.glob("*.md")):
            try:
                bundles.append(template_from_file(path))
            except (TemplateLoadError, yaml.YAMLError) as e:
                logger.error(f"Failed to load template {path.name}: {e}")
                raise

    if not findings_dir.is_dir():
        logger.info(f"Loaded {len(bundles)} templates from {root}")
        return bundles

    finding_count = 0
    for path in sorted(findings_dir.rglob("*.md")):
        try:
            finding = finding_from_file(path)
        except (TemplateLoadError, yaml.YAMLError) as e:
            logger.error(f"Failed to load finding {path.name}: {e}")
            raise

        linked = False
        for bundle in bundles:
            if finding.region_slug not in bundle.region_slugs():
                continue
            copy = Finding.from_dict({**finding.to_dict(), "template_id": bundle.template.id})
            validate_finding(copy, bundle.regions)
            bundle.findings.append(copy)
            linked = True
            finding_count += 1

        if not linked:
            logger.warning(
                f"Finding {path.name} references region '{finding.region_slug}' "
                "that no template defines; skipped"
            )

    logger.info(
        f"Loaded {len(bundles)} templates and {finding_count} findings from {root}"
    )
    return bundles
