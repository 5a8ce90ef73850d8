import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import pytest

from radlaudo.models.template_model import (
    ContrastMode,
    FieldRule,
    Finding,
    Region,
    Template,
    TemplateBundle,
)
from radlaudo.utils.cache import CacheManager

ABDOME_BODY = """# TOMOGRAFIA COMPUTADORIZADA DO ABDOME

<!-- REGIAO:figado -->
Fígado com dimensões normais.
<!-- /REGIAO:figado -->

<!-- REGIAO:rins -->
Rins tópicos, de dimensões normais.
<!-- /REGIAO:rins -->"""


def build_abdome_bundle(
    contrast: ContrastMode = ContrastMode.WITHOUT,
    slug: str = "tc-abdome-sem-contraste",
) -> TemplateBundle:
    template = Template(
        id=slug,
        slug=slug,
        name="TC Abdome",
        exam_type="tc-abdome",
        contrast=contrast,
        keywords=["abdome", "abdominal"],
        body_content=ABDOME_BODY,
    )
    regions = [
        Region(slug="figado", name="Fígado", sort_order=0, template_id=slug),
        Region(slug="rins", name="Rins", sort_order=1, template_id=slug),
    ]
    findings = [
        Finding(
            slug="cisto-hepatico",
            name="Cisto hepático",
            region_slug="figado",
            keywords=["cisto hepatico"],
            body_content="Cisto no segmento {{segmento}} medindo {{medida}}.",
            field_rules={
                "medida": FieldRule(rule="required"),
                "segmento": FieldRule(rule="optional"),
            },
            measure_default="cm",
            template_id=slug,
        ),
        Finding(
            slug="calculo-renal",
            name="Cálculo renal",
            region_slug="rins",
            keywords=["calculo renal", "litiase renal"],
            body_content="Cálculo no rim {{lado}} medindo {{medida}}. {{hidronefrose}}",
            field_rules={
                "medida": FieldRule(rule="required"),
                "lado": FieldRule(rule="required"),
                "hidronefrose": FieldRule(rule="conditional", condition="obstrucao|dilatacao"),
            },
            template_id=slug,
        ),
    ]
    return TemplateBundle(template=template, regions=regions, findings=findings)


@pytest.fixture
def bundle_factory():
    return build_abdome_bundle


@pytest.fixture
def abdome_bundles():
    """Without- and with-contrast variants of the same exam type."""
    return [
        build_abdome_bundle(ContrastMode.WITHOUT, "tc-abdome-sem-contraste"),
        build_abdome_bundle(ContrastMode.WITH, "tc-abdome-com-contraste"),
    ]


@pytest.fixture
def cache():
    return CacheManager()


@pytest.fixture
def templates_root():
    return ROOT / "templates"
