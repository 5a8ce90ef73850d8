"""Deterministic evaluation of essential and advisory field rules.

``evaluate_field_rules`` mirrors the validation contract given to the model:
missing contrast status or a missing ``required`` field blocks generation,
while unmatched exams and under-specified optional/conditional fields only
produce suggestions.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Optional, Tuple

from ...models.template_model import ContrastMode, Finding, RuleKind, TemplateBundle
from ...utils.config import settings
from ...utils.logging import get_logger
from ..models.generation import GenerationResult, RuleEvaluation

logger = get_logger(__name__)

# Words allowed between "sem"/"com"/"apos" and "contraste":
# "sem a administracao endovenosa de meio de contraste"
_CONTRAST_FILLER = (
    r"(?:(?:o|a|os|as|uso|do|da|de|meio|administracao|injecao|infusao"
    r"|endovenos[oa]|intravenos[oa]|venos[oa]|ev|iv)\s+){0,6}"
)

_WITHOUT_CONTRAST = [
    re.compile(rf"\bsem\s+{_CONTRAST_FILLER}contraste\b"),
    re.compile(r"\bnao contrastad[oa]s?\b"),
]
_WITH_CONTRAST = [
    re.compile(rf"\bcom\s+{_CONTRAST_FILLER}contraste\b"),
    re.compile(rf"\b(?:apos|pos)\s+{_CONTRAST_FILLER}contraste\b"),
    re.compile(r"\bcontrastad[oa]s?\b"),
    re.compile(r"\bpos-?contraste\b"),
    re.compile(r"\bfases? (?:arterial|portal|venosa)\b"),
]
# "tc abdome sem, normal" / "tc torax com."
_HEADER_SHORTHAND = re.compile(r"\btc (?:[a-z]+ ){1,3}?(com|sem)(?=\s*(?:[,.;:\n]|$))")

_MEASUREMENT = re.compile(
    r"\d+(?:[.,]\d+)?(?:\s*x\s*\d+(?:[.,]\d+)?)*\s*(?:mm|cm|ml|cc|cm3|hu|uh)\b"
)
_LATERALITY = re.compile(
    r"\b(?:direit[oa]s?|esquerd[oa]s?|dir|esq|bilateral|bilaterais|ambos os lados)\b"
)
_MEASUREMENT_HINTS = (
    "medida", "tamanho", "diametro", "dimens", "volume", "espessura",
    "extensao", "calibre", "eixo",
)
_LATERALITY_HINTS = ("lado", "lateral")
# Decimal points ("0.5 cm") do not end a sentence
_SENTENCE_SPLIT = re.compile(r"[;\n]+|\.(?!\d)")

GENERIC_EMPTY_RESULT_ERROR = "O modelo não retornou laudo nem mensagem de erro."


def normalize_text(text: str) -> str:
    """Lower case, no accents, ``tomografia``/``tomo`` folded to ``tc``."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    plain = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    plain = re.sub(r"[ \t]+", " ", plain).strip()
    plain = re.sub(r"\btomografia(?: computadorizada)?\b", "tc", plain)
    return re.sub(r"\btomo\b", "tc", plain)


def _contains_term(text: str, term: str) -> bool:
    term = normalize_text(term)
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) is not None


def detect_contrast(normalized: str) -> Optional[str]:
    """Return ``com``, ``sem``, ``ambos`` or None when the dictation is silent."""
    without = any(p.search(normalized) for p in _WITHOUT_CONTRAST)

    remainder = normalized
    for pattern in _WITHOUT_CONTRAST:
        remainder = pattern.sub(" ", remainder)
    with_ = any(p.search(remainder) for p in _WITH_CONTRAST)

    shorthand = _HEADER_SHORTHAND.search(remainder if without else normalized)
    if shorthand:
        if shorthand.group(1) == "com":
            with_ = True
        else:
            without = True

    if with_ and without:
        return ContrastMode.BOTH.value
    if with_:
        return ContrastMode.WITH.value
    if without:
        return ContrastMode.WITHOUT.value
    return None


def _template_matches(bundle: TemplateBundle, normalized: str) -> bool:
    template = bundle.template
    if any(_contains_term(normalized, keyword) for keyword in template.keywords):
        return True
    tokens = [t for t in re.split(r"[-_\s]+", normalize_text(template.exam_type)) if t]
    return bool(tokens) and all(_contains_term(normalized, token) for token in tokens)


def _contrast_compatible(bundle: TemplateBundle, contrast: Optional[str]) -> bool:
    mode = bundle.template.contrast
    if contrast == ContrastMode.WITH.value:
        return mode != ContrastMode.WITHOUT
    if contrast == ContrastMode.WITHOUT.value:
        return mode != ContrastMode.WITH
    return True


def _sentences_mentioning(normalized: str, finding: Finding) -> List[str]:
    return [
        sentence
        for sentence in _SENTENCE_SPLIT.split(normalized)
        if any(_contains_term(sentence, keyword) for keyword in finding.keywords)
    ]


def _field_present(field_name: str, sentences: Iterable[str]) -> bool:
    name = normalize_text(field_name.replace("_", " "))
    text = " ".join(sentences)
    if any(hint in name for hint in _MEASUREMENT_HINTS):
        return _MEASUREMENT.search(text) is not None
    if any(hint in name for hint in _LATERALITY_HINTS):
        return _LATERALITY.search(text) is not None
    return all(_contains_term(text, word) for word in name.split())


def condition_holds(condition: Optional[str], normalized: str) -> bool:
    """``a|b`` holds when any term occurs; ``!a`` when ``a`` does not occur."""
    for alternative in (condition or "").split("|"):
        alternative = alternative.strip()
        if not alternative:
            continue
        if alternative.startswith("!"):
            if not _contains_term(normalized, alternative[1:].strip()):
                return True
        elif _contains_term(normalized, alternative):
            return True
    return False


def _check_fields(
    finding: Finding, normalized: str
) -> Tuple[List[str], List[str]]:
    sentences = _sentences_mentioning(normalized, finding)
    blocking: List[str] = []
    advisory: List[str] = []

    for field_name, rule in finding.field_rules.items():
        if rule.default is not None or _field_present(field_name, sentences):
            continue
        if rule.rule == RuleKind.REQUIRED.value:
            blocking.append(
                f"Achado '{finding.name}': campo obrigatório '{field_name}' não informado."
            )
        elif rule.rule == RuleKind.OPTIONAL.value:
            advisory.append(
                f"Achado '{finding.name}': considere descrever '{field_name}'."
            )
        elif rule.rule == RuleKind.CONDITIONAL.value and condition_holds(
            rule.condition, normalized
        ):
            advisory.append(
                f"Achado '{finding.name}': descreva '{field_name}' "
                f"(aplicável quando {rule.condition})."
            )
    return blocking, advisory


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def evaluate_field_rules(dictation: str, bundles: List[TemplateBundle]) -> RuleEvaluation:
    """Evaluate the dictation against the templates visible to the requester."""
    normalized = normalize_text(dictation)
    contrast = detect_contrast(normalized)

    matched = [
        bundle
        for bundle in bundles
        if _template_matches(bundle, normalized) and _contrast_compatible(bundle, contrast)
    ]

    blocking: List[str] = []
    advisory: List[str] = []

    if contrast is None:
        if matched and not all(b.template.contrast == ContrastMode.BOTH for b in matched):
            blocking.append(
                "Contraste não especificado: informe se o exame foi realizado com ou sem contraste."
            )
        elif not matched:
            advisory.append("Informe se o exame foi realizado com ou sem contraste.")

    if not matched:
        advisory.append(
            "Nenhuma máscara corresponde ao exame ditado; o laudo será gerado em texto livre. "
            "Revise a completude da descrição."
        )

    mentioned: List[str] = []
    for bundle in matched or bundles:
        for finding in bundle.findings:
            if not any(_contains_term(normalized, k) for k in finding.keywords):
                continue
            if finding.slug not in mentioned:
                mentioned.append(finding.slug)
            finding_blocking, finding_advisory = _check_fields(finding, normalized)
            blocking.extend(finding_blocking)
            advisory.extend(finding_advisory)

    return RuleEvaluation(
        blocking=_dedupe(blocking),
        advisory=_dedupe(advisory),
        contrast=contrast,
        matched_templates=[b.template.slug for b in matched],
        mentioned_findings=mentioned,
    )


class ValidationGate:
    """Applies the two-tier taxonomy to requests and to parsed results."""

    def __init__(self, enforce_essential: Optional[bool] = None):
        self.enforce_essential = (
            settings.enforce_essential_fields
            if enforce_essential is None
            else enforce_essential
        )

    def evaluate(self, dictation: str, bundles: List[TemplateBundle]) -> RuleEvaluation:
        evaluation = evaluate_field_rules(dictation, bundles)
        logger.info(
            "Field rules evaluated",
            extra={
                "extra_fields": {
                    "blocking": len(evaluation.blocking),
                    "advisory": len(evaluation.advisory),
                    "contrast": evaluation.contrast,
                    "matched_templates": evaluation.matched_templates,
                }
            },
        )
        return evaluation

    def should_block(self, evaluation: RuleEvaluation) -> bool:
        return self.enforce_essential and evaluation.is_blocked

    @staticmethod
    def blocking_message(evaluation: RuleEvaluation) -> str:
        return "Informação essencial ausente: " + " ".join(evaluation.blocking)

    def finalize(
        self, result: GenerationResult, evaluation: Optional[RuleEvaluation] = None
    ) -> GenerationResult:
        """Enforce the result invariants: an error clears report and suggestions."""
        if result.error is not None:
            return GenerationResult(report=None, suggestions=[], error=result.error)

        if result.report is None:
            return GenerationResult(
                report=None, suggestions=[], error=GENERIC_EMPTY_RESULT_ERROR
            )

        advisory = evaluation.advisory if evaluation is not None else []
        return GenerationResult(
            report=result.report,
            suggestions=_dedupe(list(result.suggestions) + list(advisory)),
            error=None,
        )
