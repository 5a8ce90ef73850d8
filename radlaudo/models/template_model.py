"""Report template records: templates, anatomical regions and findings."""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Any, Optional, List


PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][\w]*)\s*\}\}")
REGION_MARKER_PATTERN = re.compile(
    r"<!-- REGIAO:(\S+) -->([\s\S]*?)<!-- /REGIAO:\1 -->"
)


class ContrastMode(str, Enum):
    """Contrast classification of a template."""

    WITH = "com"
    WITHOUT = "sem"
    BOTH = "ambos"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContrastMode":
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        aliases = {
            "com": cls.WITH,
            "with": cls.WITH,
            "sem": cls.WITHOUT,
            "without": cls.WITHOUT,
            "ambos": cls.BOTH,
            "both": cls.BOTH,
        }
        return aliases.get(normalized, cls.BOTH)


class RuleKind(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    CONDITIONAL = "conditional"


class TemplateStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class TemplateValidationError(ValueError):
    """Raised when a template record fails write-time validation."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


@dataclass
class FieldRule:
    """Constraint on one placeholder of a finding."""

    rule: str
    condition: Optional[str] = None
    default: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldRule":
        return cls(
            rule=str(data.get("rule", RuleKind.OPTIONAL.value)),
            condition=data.get("condition"),
            default=data.get("default"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"rule": self.rule}
        if self.condition is not None:
            data["condition"] = self.condition
        if self.default is not None:
            data["default"] = self.default
        return data


@dataclass
class Region:
    """Anatomical section of a template, in fixed display order."""

    slug: str
    name: str
    sort_order: int = 0
    default_normal_text: Optional[str] = None
    is_optional: bool = False
    template_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Region":
        """Create a Region from a database row."""
        return cls(
            slug=data.get("region_slug") or data.get("slug", ""),
            name=data.get("region_name") or data.get("name", ""),
            sort_order=int(data.get("sort_order", 0) or 0),
            default_normal_text=data.get("default_normal_text"),
            is_optional=bool(data.get("is_optional", False)),
            template_id=_as_id(data.get("template_id")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "region_slug": self.slug,
            "region_name": self.name,
            "sort_order": self.sort_order,
            "default_normal_text": self.default_normal_text,
            "is_optional": self.is_optional,
        }


@dataclass
class Finding:
    """Reusable abnormality snippet tied to a region by slug."""

    slug: str
    name: str
    region_slug: str
    body_content: str
    keywords: List[str] = field(default_factory=list)
    field_rules: Dict[str, FieldRule] = field(default_factory=dict)
    measure_default: Optional[str] = None
    template_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        """Create a Finding from a database row."""
        rules = data.get("field_rules") or {}
        return cls(
            slug=data.get("slug", ""),
            name=data.get("name", ""),
            region_slug=data.get("region_slug", ""),
            body_content=data.get("body_content", "") or "",
            keywords=list(data.get("keywords") or []),
            field_rules={
                name: rule if isinstance(rule, FieldRule) else FieldRule.from_dict(rule)
                for name, rule in rules.items()
            },
            measure_default=data.get("measure_default"),
            template_id=_as_id(data.get("template_id")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "region_slug": self.region_slug,
            "slug": self.slug,
            "name": self.name,
            "keywords": list(self.keywords),
            "body_content": self.body_content,
            "field_rules": (
                {name: rule.to_dict() for name, rule in self.field_rules.items()}
                or None
            ),
            "measure_default": self.measure_default,
        }

    @property
    def placeholders(self) -> List[str]:
        """Placeholder names in body order, without duplicates."""
        seen: List[str] = []
        for match in PLACEHOLDER_PATTERN.finditer(self.body_content):
            if match.group(1) not in seen:
                seen.append(match.group(1))
        return seen

    def fields_with_rule(self, kind: RuleKind) -> List[str]:
        return [name for name, rule in self.field_rules.items() if rule.rule == kind.value]


@dataclass
class Template:
    """Full report skeleton for one exam type/contrast combination."""

    slug: str
    name: str
    exam_type: str
    body_content: str
    contrast: ContrastMode = ContrastMode.BOTH
    exam_subtype: Optional[str] = None
    urgency_default: bool = True
    keywords: List[str] = field(default_factory=list)
    description: Optional[str] = None
    id: Optional[str] = None
    owner_user_id: Optional[str] = None
    ownership: str = "admin"
    status: TemplateStatus = TemplateStatus.ACTIVE
    parent_template_id: Optional[str] = None
    locale: str = "pt-BR"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        """Create a Template from a database row."""
        return cls(
            id=_as_id(data.get("id")),
            slug=data.get("slug", ""),
            name=data.get("name", ""),
            description=data.get("description"),
            exam_type=data.get("exam_type", ""),
            exam_subtype=data.get("exam_subtype"),
            contrast=ContrastMode.parse(data.get("contrast")),
            urgency_default=bool(data.get("urgency_default", True)),
            keywords=list(data.get("keywords") or []),
            body_content=data.get("body_content", "") or "",
            owner_user_id=data.get("owner_user_id"),
            ownership=data.get("ownership") or "admin",
            status=TemplateStatus(data.get("status") or TemplateStatus.ACTIVE.value),
            parent_template_id=_as_id(data.get("parent_template_id")),
            locale=data.get("locale") or "pt-BR",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "exam_type": self.exam_type,
            "exam_subtype": self.exam_subtype,
            "contrast": self.contrast.value,
            "urgency_default": self.urgency_default,
            "keywords": list(self.keywords),
            "body_content": self.body_content,
            "owner_user_id": self.owner_user_id,
            "ownership": self.ownership,
            "status": self.status.value,
            "parent_template_id": self.parent_template_id,
            "locale": self.locale,
        }

    @property
    def is_archived(self) -> bool:
        return self.status == TemplateStatus.ARCHIVED


@dataclass
class TemplateBundle:
    """A template with its regions (sort order) and findings (insertion order)."""

    template: Template
    regions: List[Region] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)

    def region_slugs(self) -> List[str]:
        return [region.slug for region in self.regions]

    def region_for(self, finding: Finding) -> Optional[Region]:
        """Resolve a finding's region by slug; dangling references give None."""
        for region in self.regions:
            if region.slug == finding.region_slug:
                return region
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.template.to_dict(),
            "regions": [region.to_dict() for region in self.regions],
            "findings": [finding.to_dict() for finding in self.findings],
        }


def parse_regions_from_body(body: str) -> List[Region]:
    """Extract ``<!-- REGIAO:slug -->`` blocks in document order."""
    regions = []
    for sort_order, match in enumerate(REGION_MARKER_PATTERN.finditer(body)):
        slug = match.group(1)
        content = match.group(2).strip()
        regions.append(
            Region(
                slug=slug,
                name=slug_to_name(slug),
                sort_order=sort_order,
                default_normal_text=content or None,
            )
        )
    return regions


def slug_to_name(slug: str) -> str:
    """Turn ``tc-abdome-sem-contraste.md`` into ``TC Abdome sem Contraste``."""
    name = slug.replace(".md", "").replace("-", " ").replace("_", " ")
    name = re.sub(r"\b\w", lambda m: m.group(0).upper(), name)
    for word, fixed in (("Tc", "TC"), ("Com", "com"), ("Sem", "sem"), ("De", "de")):
        name = re.sub(rf"\b{word}\b", fixed, name)
    return name


def validate_finding(finding: Finding, regions: Optional[List[Region]] = None) -> None:
    """Write-time checks for a finding; raises with every problem found."""
    problems = []
    placeholders = set(finding.placeholders)
    valid_kinds = {kind.value for kind in RuleKind}

    for name, rule in finding.field_rules.items():
        if name not in placeholders:
            problems.append(
                f"field rule '{name}' has no matching placeholder in finding '{finding.slug}'"
            )
        if rule.rule not in valid_kinds:
            problems.append(f"field '{name}' has unknown rule kind '{rule.rule}'")
        elif rule.rule == RuleKind.CONDITIONAL.value and not (rule.condition or "").strip():
            problems.append(f"conditional field '{name}' has no condition")

    if regions is not None and finding.region_slug not in {r.slug for r in regions}:
        problems.append(
            f"finding '{finding.slug}' references unknown region '{finding.region_slug}'"
        )

    if problems:
        raise TemplateValidationError(problems)


def validate_regions(regions: List[Region]) -> None:
    """Region slugs must be unique within a template."""
    seen = set()
    duplicates = []
    for region in regions:
        if region.slug in seen:
            duplicates.append(f"duplicate region slug '{region.slug}'")
        seen.add(region.slug)
    if duplicates:
        raise TemplateValidationError(duplicates)


def clone_bundle(
    bundle: TemplateBundle, new_id: str, owner_user_id: str
) -> TemplateBundle:
    """Independent copy of a template with a back-reference to its origin."""
    source = bundle.template
    template = replace(
        source,
        id=new_id,
        slug=f"{source.slug}-copy",
        name=f"{source.name} (cópia)",
        keywords=list(source.keywords),
        owner_user_id=owner_user_id,
        ownership="user",
        status=TemplateStatus.DRAFT,
        parent_template_id=source.id,
    )
    regions = [replace(region, template_id=new_id) for region in bundle.regions]
    findings = [
        replace(
            finding,
            template_id=new_id,
            keywords=list(finding.keywords),
            field_rules={name: replace(rule) for name, rule in finding.field_rules.items()},
        )
        for finding in bundle.findings
    ]
    return TemplateBundle(template=template, regions=regions, findings=findings)


def _as_id(value: Any) -> Optional[str]:
    return None if value is None else str(value)
