"""
Tests for system prompt assembly.
"""

import itertools

import pytest

from radlaudo.app.services.context_formatter import format_grounding_context
from radlaudo.app.services.prompt_assembler import (
    COMPARATIVE_ADDENDUM,
    EMERGENCY_ADDENDUM,
    FIDELITY_CONSTRAINT,
    FIDELITY_PLACEHOLDER,
    RESEARCH_DETAIL_ADDENDUM,
    assemble_system_prompt,
)

SECTION_HEADERS = [
    "## REGRAS GERAIS",
    "## REGRAS DE FORMATAÇÃO",
    "## NÍVEIS DE VALIDAÇÃO",
    "## BLOCOS OPCIONAIS",
    "## ABREVIAÇÕES ACEITAS",
    "## MÁSCARAS DISPONÍVEIS",
    "## ACHADOS DISPONÍVEIS",
    "## FORMATO DE RESPOSTA",
]


@pytest.mark.parametrize(
    "emergency, comparative, research", list(itertools.product([False, True], repeat=3))
)
def test_fidelity_constraint_appears_exactly_once(emergency, comparative, research):
    prompt = assemble_system_prompt(
        format_grounding_context([]),
        emergency_mode=emergency,
        comparative_mode=comparative,
        research_detail_mode=research,
    )

    assert prompt.count(FIDELITY_CONSTRAINT) == 1
    assert (EMERGENCY_ADDENDUM in prompt) is emergency
    assert (COMPARATIVE_ADDENDUM in prompt) is comparative
    assert (RESEARCH_DETAIL_ADDENDUM in prompt) is research


def test_fidelity_constraint_in_template_body_is_not_repeated():
    prompt = assemble_system_prompt("### Máscara\nbody: " + FIDELITY_CONSTRAINT)

    assert prompt.count(FIDELITY_CONSTRAINT) == 1
    assert "body: " + FIDELITY_PLACEHOLDER in prompt


def test_sections_keep_fixed_order(bundle_factory):
    prompt = assemble_system_prompt(format_grounding_context([bundle_factory()]))

    positions = [prompt.index(header) for header in SECTION_HEADERS]
    assert positions == sorted(positions)


def test_addenda_follow_output_format_in_fixed_order():
    prompt = assemble_system_prompt(
        format_grounding_context([]),
        emergency_mode=True,
        comparative_mode=True,
        research_detail_mode=True,
    )

    output_format = prompt.index("## FORMATO DE RESPOSTA")
    emergency = prompt.index(EMERGENCY_ADDENDUM)
    comparative = prompt.index(COMPARATIVE_ADDENDUM)
    research = prompt.index(RESEARCH_DETAIL_ADDENDUM)
    assert output_format < emergency < comparative < research


def test_grounding_context_is_embedded_verbatim(bundle_factory):
    context = format_grounding_context([bundle_factory()])

    prompt = assemble_system_prompt(context)

    assert context.strip() in prompt


def test_same_inputs_give_same_prompt(bundle_factory):
    context = format_grounding_context([bundle_factory()])

    first = assemble_system_prompt(context, emergency_mode=True)
    second = assemble_system_prompt(context, emergency_mode=True)

    assert first == second


def test_oversized_context_is_cut_at_section_boundary(abdome_bundles):
    context = format_grounding_context(abdome_bundles)
    limit = len(context) // 2

    prompt = assemble_system_prompt(context, max_context_chars=limit)

    assert "contexto truncado" in prompt
    assert prompt.count(FIDELITY_CONSTRAINT) == 1
    # The first template block survives whole
    first_block = context[: context.index("\n### ", context.index("### ") + 1)]
    assert first_block.strip() in prompt
    assert "## FORMATO DE RESPOSTA" in prompt


def test_context_within_limit_is_untouched(bundle_factory):
    context = format_grounding_context([bundle_factory()])

    prompt = assemble_system_prompt(context, max_context_chars=len(context) + 10)

    assert "contexto truncado" not in prompt
    assert context.strip() in prompt
