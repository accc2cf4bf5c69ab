# chuk_prompt_experiments/variants/definitions.py
"""
Default variant catalogue.

One production champion and one experimental candidate per content type.
These are the baseline every experiment starts from.
"""

from __future__ import annotations

import logging

from .models import ContentType, Variant, VariantMetadata, VariantStatus
from .registry import VariantRegistry

logger = logging.getLogger(__name__)

# Strategy Table keys -> variant content types
TASK_TYPE_CONTENT_TYPES: dict[str, ContentType] = {
    "roadmap": ContentType.ROADMAP,
    "slides": ContentType.SLIDES,
    "document": ContentType.DOCUMENT,
    "research-analysis": ContentType.RESEARCH_ANALYSIS,
}


def content_type_for_task(task_type: str) -> ContentType | None:
    return TASK_TYPE_CONTENT_TYPES.get(task_type)


def _variant(
    variant_id: str,
    name: str,
    content_type: ContentType,
    status: VariantStatus,
    weight: float,
    description: str,
    tags: list[str],
    template: str,
) -> Variant:
    return Variant(
        id=variant_id,
        name=name,
        content_type=content_type.value,
        status=status,
        weight=weight,
        prompt_template=template.strip(),
        metadata=VariantMetadata(description=description, tags=tags),
    )


ROADMAP_TEMPLATE = """
You are a project planning analyst producing Gantt chart JSON. Output only valid JSON.

1. Time range: collect every date in the research, including past ones. Column 1 is the earliest.
2. Interval: up to 90 days use weeks, up to a year months, up to three years quarters, else years.
3. Swimlanes: prefer named entities over departments; each needs at least 3 tasks.
4. Bars: startCol is 1-based, endCol is exclusive. Unknown dates use null for both.
5. Types: decision (approval, gate, sign-off) > milestone (launch, complete) > task.
6. Extract everything: tasks, milestones, decisions, deadlines, phases.
"""

ROADMAP_CONCISE_TEMPLATE = """
Create Gantt chart JSON. Same inputs must give the same output.

TIME: earliest date is column 1. INTERVAL: weeks/months/quarters/years by span.
SWIMLANES: named entities first, min 3 tasks each.
BARS: 1-based startCol, exclusive endCol, null when unknown.
EXTRACT ALL tasks, milestones, decisions and deadlines.
"""

SLIDES_TEMPLATE = """
Create 6 slides as JSON.

Slide types:
- textTwoColumn: {type, title, section, paragraphs: [p1, p2]}
- textThreeColumn: {type, title, section, columns: [c1, c2, c3]}
- textWithCards: {type, title, section, content, cards: [{title, content}]}

Return: {"title": "...", "slides": [...]}
"""

SLIDES_STRUCTURED_TEMPLATE = """
Create a 6-slide executive presentation as JSON.

Order: title and key message, context (3 cards), key findings (3 columns),
analysis, recommendations (3-4 cards), next steps.

Slide types: textTwoColumn, textThreeColumn, textWithCards.
Return: {"title": "...", "slides": [...]}
"""

DOCUMENT_TEMPLATE = """
You are an expert analyst. Write a clear executive summary.

- Use only facts from the provided research
- 4-6 sections, 2-4 paragraphs each

Output JSON: {"title": "...", "sections": [{"heading": "...", "paragraphs": [...]}]}
"""

DOCUMENT_DETAILED_TEMPLATE = """
Create a comprehensive executive summary document.

Sections: overview, key findings, analysis, implications, recommendations, conclusion.
Ground every statement in the research and prefer concrete data.
Paragraphs are 2-4 sentences.

Output JSON: {"title": "...", "sections": [{"heading": "...", "paragraphs": [...]}]}
"""

RESEARCH_TEMPLATE = """
You are a research analyst judging whether research can support a Gantt chart. Output only JSON.

Score each theme 1-10 by date precision: specific dates score highest, narrative-only lowest.
Per theme report fitnessScore, datesCounted, gaps and recommendations.
Verdict: ready, needs-improvement or insufficient, with the reasons.
"""

RESEARCH_BRIEF_TEMPLATE = """
Evaluate research quality for Gantt chart creation. JSON only.

SCORE 1-10 per theme by date precision. List gaps and recommendations.
VERDICT: ready | needs-improvement | insufficient.
"""


DEFAULT_VARIANTS: list[Variant] = [
    _variant(
        "roadmap-champion-v1",
        "Roadmap Champion V1",
        ContentType.ROADMAP,
        VariantStatus.CHAMPION,
        1.0,
        "Production Gantt chart prompt tuned for deterministic output",
        ["production", "deterministic", "structured"],
        ROADMAP_TEMPLATE,
    ),
    _variant(
        "roadmap-concise-v1",
        "Roadmap Concise V1",
        ContentType.ROADMAP,
        VariantStatus.CANDIDATE,
        0.8,
        "Shorter prompt testing whether fewer tokens keep quality",
        ["experimental", "concise", "token-optimized"],
        ROADMAP_CONCISE_TEMPLATE,
    ),
    _variant(
        "slides-champion-v1",
        "Slides Champion V1",
        ContentType.SLIDES,
        VariantStatus.CHAMPION,
        1.0,
        "Production slides prompt",
        ["production", "minimal", "fast"],
        SLIDES_TEMPLATE,
    ),
    _variant(
        "slides-structured-v1",
        "Slides Structured V1",
        ContentType.SLIDES,
        VariantStatus.CANDIDATE,
        0.8,
        "Slides prompt with a fixed narrative structure",
        ["experimental", "structured", "guided"],
        SLIDES_STRUCTURED_TEMPLATE,
    ),
    _variant(
        "document-champion-v1",
        "Document Champion V1",
        ContentType.DOCUMENT,
        VariantStatus.CHAMPION,
        1.0,
        "Production executive summary prompt",
        ["production", "concise", "executive"],
        DOCUMENT_TEMPLATE,
    ),
    _variant(
        "document-detailed-v1",
        "Document Detailed V1",
        ContentType.DOCUMENT,
        VariantStatus.CANDIDATE,
        0.8,
        "Document prompt with explicit section guidance",
        ["experimental", "detailed", "structured"],
        DOCUMENT_DETAILED_TEMPLATE,
    ),
    _variant(
        "research-champion-v1",
        "Research Analysis Champion V1",
        ContentType.RESEARCH_ANALYSIS,
        VariantStatus.CHAMPION,
        1.0,
        "Production research quality analysis prompt",
        ["production", "comprehensive", "gantt-focused"],
        RESEARCH_TEMPLATE,
    ),
    _variant(
        "research-brief-v1",
        "Research Analysis Brief V1",
        ContentType.RESEARCH_ANALYSIS,
        VariantStatus.CANDIDATE,
        0.8,
        "Condensed research analysis prompt for faster generation",
        ["experimental", "brief", "fast"],
        RESEARCH_BRIEF_TEMPLATE,
    ),
]


def get_default_variants(content_type: str | None = None) -> list[Variant]:
    """Fresh copies of the catalogue, optionally for one content type."""
    return [
        v.model_copy(deep=True) for v in DEFAULT_VARIANTS if content_type is None or v.content_type == content_type
    ]


def seed_default_variants(registry: VariantRegistry, force: bool = False) -> int:
    """
    Register the default catalogue.

    Skips if the registry already holds variants unless ``force`` is set;
    with ``force``, ids already present are left as they are.
    Returns the number of variants registered.
    """
    if len(registry) and not force:
        logger.debug("Registry already populated, skipping default variants")
        return 0

    registered = 0
    for variant in get_default_variants():
        if variant.id in registry:
            continue
        if variant.status == VariantStatus.CHAMPION and registry.get_champion(variant.content_type):
            variant.status = VariantStatus.CANDIDATE
        registry.register(variant)
        registered += 1

    logger.info(f"Seeded {registered} default variants")
    return registered
