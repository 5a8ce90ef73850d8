"""
Tests for template records, region parsing and write-time validation.
"""

import pytest

from radlaudo.models.template_model import (
    ContrastMode,
    FieldRule,
    Finding,
    Region,
    RuleKind,
    Template,
    TemplateStatus,
    TemplateValidationError,
    clone_bundle,
    parse_regions_from_body,
    slug_to_name,
    validate_finding,
    validate_regions,
)


def test_regions_are_parsed_in_document_order():
    body = (
        "<!-- REGIAO:figado -->\nFígado normal.\n<!-- /REGIAO:figado -->\n"
        "<!-- REGIAO:baco -->\n<!-- /REGIAO:baco -->"
    )

    regions = parse_regions_from_body(body)

    assert [r.slug for r in regions] == ["figado", "baco"]
    assert [r.sort_order for r in regions] == [0, 1]
    assert regions[0].default_normal_text == "Fígado normal."
    assert regions[1].default_normal_text is None


def test_slug_to_name():
    assert slug_to_name("tc-abdome-sem-contraste.md") == "TC Abdome sem Contraste"
    assert slug_to_name("calculo-renal") == "Calculo Renal"


def test_contrast_mode_aliases():
    assert ContrastMode.parse("com") is ContrastMode.WITH
    assert ContrastMode.parse("WITHOUT") is ContrastMode.WITHOUT
    assert ContrastMode.parse(None) is ContrastMode.BOTH


def test_finding_placeholders_and_rule_groups(bundle_factory):
    finding = bundle_factory().findings[1]

    assert finding.placeholders == ["lado", "medida", "hidronefrose"]
    assert finding.fields_with_rule(RuleKind.REQUIRED) == ["medida", "lado"]
    assert finding.fields_with_rule(RuleKind.CONDITIONAL) == ["hidronefrose"]


def test_valid_finding_passes(bundle_factory):
    bundle = bundle_factory()

    for finding in bundle.findings:
        validate_finding(finding, bundle.regions)


def test_rule_without_placeholder_is_rejected():
    finding = Finding(
        slug="cisto", name="Cisto", region_slug="figado",
        body_content="Cisto de {{medida}}.",
        field_rules={"medida": FieldRule("required"), "segmento": FieldRule("optional")},
    )

    with pytest.raises(TemplateValidationError) as exc_info:
        validate_finding(finding)

    assert "segmento" in str(exc_info.value)


def test_conditional_without_condition_is_rejected():
    finding = Finding(
        slug="calculo", name="Cálculo", region_slug="rins",
        body_content="{{hidronefrose}}",
        field_rules={"hidronefrose": FieldRule("conditional")},
    )

    with pytest.raises(TemplateValidationError):
        validate_finding(finding)


def test_unknown_rule_kind_is_rejected():
    finding = Finding(
        slug="calculo", name="Cálculo", region_slug="rins",
        body_content="{{lado}}", field_rules={"lado": FieldRule("mandatory")},
    )

    with pytest.raises(TemplateValidationError):
        validate_finding(finding)


def test_unknown_region_is_rejected(bundle_factory):
    bundle = bundle_factory()
    finding = Finding(slug="nodulo", name="Nódulo", region_slug="pulmoes", body_content="")

    with pytest.raises(TemplateValidationError) as exc_info:
        validate_finding(finding, bundle.regions)

    assert exc_info.value.problems == ["finding 'nodulo' references unknown region 'pulmoes'"]


def test_duplicate_region_slugs_are_rejected():
    with pytest.raises(TemplateValidationError):
        validate_regions([Region(slug="rins", name="Rins"), Region(slug="rins", name="Rim")])


def test_clone_is_independent_copy(bundle_factory):
    source = bundle_factory()

    copy = clone_bundle(source, new_id="copy-1", owner_user_id="user-9")
    copy.findings[0].keywords.append("novo")
    copy.findings[0].field_rules["medida"].default = "1 cm"

    assert copy.template.parent_template_id == source.template.id
    assert copy.template.slug == "tc-abdome-sem-contraste-copy"
    assert copy.template.owner_user_id == "user-9"
    assert copy.template.ownership == "user"
    assert copy.template.status == TemplateStatus.DRAFT
    assert all(r.template_id == "copy-1" for r in copy.regions)
    assert "novo" not in source.findings[0].keywords
    assert source.findings[0].field_rules["medida"].default is None


def test_template_row_round_trip():
    template = Template(
        id="7", slug="tc-torax", name="TC Tórax", exam_type="tc-torax",
        body_content="Pulmões.", contrast=ContrastMode.WITH, keywords=["torax"],
    )

    restored = Template.from_dict(template.to_dict())

    assert restored == template
