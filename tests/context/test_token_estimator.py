# tests/context/test_token_estimator.py
"""
Tests for the token estimator.

Covers:
- Base ratio and additive corrections (punctuation, digits, code, URLs)
- Content-kind and model-family multipliers
- Monotonicity over growing text
- Budget fit and capacity estimation
- Paragraph-aware splitting with overlap
"""

import pytest

from chuk_prompt_experiments.context import (
    BudgetCategory,
    ContentKind,
    ModelFamily,
    StrategyTable,
    TokenBudget,
    TokenEstimator,
    TokenEstimatorConfig,
)


SAMPLE = (
    "# Roadmap notes\n\n"
    "Phase 1 starts 01/15/2025 and ends in Q2 2025. See https://example.com/plan for details.\n\n"
    "```python\nprint('hello')\n```\n\n"
    "Budget: $1,200,000 (approx.) - 45% allocated to engineering; the rest TBD!"
)


def _paragraphs(count: int) -> str:
    return "\n\n".join(f"Paragraph {i} " + ("lorem ipsum " * 20).strip() for i in range(count))


class TestCount:
    """Basic counting."""

    def test_empty_text_is_zero(self):
        estimator = TokenEstimator()
        assert estimator.count("") == 0
        assert estimator.count(None) == 0

    def test_plain_ratio(self):
        # 11 chars / 4
        assert TokenEstimator().count("Hello world") == 3

    def test_punctuation_adds_tokens(self):
        estimator = TokenEstimator()
        assert estimator.count("a,b,c,d,e,f,g,h") > estimator.count("a b c d e f g h")

    def test_digits_add_tokens(self):
        estimator = TokenEstimator()
        assert estimator.count("a" * 40 + "1234567890") > estimator.count("a" * 50)

    def test_code_block_and_url_corrections(self):
        estimator = TokenEstimator()
        plain = "x" * 40
        with_url = plain + " https://example.com"
        assert estimator.count(with_url) >= estimator.count(plain) + 10
        with_block = "```" + plain + "```"
        assert estimator.count(with_block) >= estimator.count(plain) + 5

    def test_content_kind_multiplier(self):
        estimator = TokenEstimator()
        text = "word " * 200
        assert estimator.count(text, ContentKind.CODE) < estimator.count(text, ContentKind.MARKDOWN)
        assert estimator.count(text, ContentKind.MARKDOWN) < estimator.count(text, ContentKind.PROSE)

    def test_model_family_multiplier(self):
        text = "word " * 200
        gemini = TokenEstimator(TokenEstimatorConfig(model_family=ModelFamily.GEMINI)).count(text)
        gpt = TokenEstimator(TokenEstimatorConfig(model_family=ModelFamily.GPT)).count(text)
        claude = TokenEstimator(TokenEstimatorConfig(model_family=ModelFamily.CLAUDE)).count(text)
        assert gpt < claude < gemini

    def test_count_detailed(self):
        detail = TokenEstimator().count_detailed("Hello world")
        assert detail.tokens == 3
        assert detail.characters == 11
        assert detail.words == 2
        assert TokenEstimator().count_detailed("").method == "empty"

    def test_count_many(self):
        estimator = TokenEstimator()
        texts = ["Hello world", "Another line of text"]
        assert estimator.count_many(texts) == sum(estimator.count(t) for t in texts)


class TestMonotonicity:
    """More characters of the same kind never lower the estimate."""

    @pytest.mark.parametrize("kind", list(ContentKind))
    def test_prefixes_never_decrease(self, kind):
        estimator = TokenEstimator()
        previous = 0
        for end in range(1, len(SAMPLE) + 1):
            current = estimator.count(SAMPLE[:end], kind)
            assert current >= previous
            previous = current


class TestBudgetFit:
    def test_fits(self):
        fit = TokenEstimator().fits_in_budget("Hello world", 10)
        assert fit.fits is True
        assert fit.overage == 0
        assert fit.utilization == pytest.approx(0.3)

    def test_over_budget(self):
        fit = TokenEstimator().fits_in_budget("Hello world", 2)
        assert fit.fits is False
        assert fit.overage == 1

    def test_capacity_inverse(self):
        estimator = TokenEstimator()
        capacity = estimator.estimate_capacity(100)
        assert capacity.estimated_characters == 400
        assert capacity.estimated_words == 80
        # Denser kinds fit more characters per token
        assert estimator.estimate_capacity(100, ContentKind.CODE).estimated_characters > 400

    def test_capacity_round_trip_fits(self):
        estimator = TokenEstimator()
        chars = estimator.estimate_capacity(250).estimated_characters
        assert estimator.count("a" * chars) <= 250


class TestSplitToFit:
    def test_short_text_single_chunk(self):
        assert TokenEstimator().split_to_fit("short text", 100) == ["short text"]

    def test_empty_text(self):
        assert TokenEstimator().split_to_fit("", 100) == []

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            TokenEstimator().split_to_fit("text", 0)

    def test_chunks_respect_budget_and_paragraphs(self):
        estimator = TokenEstimator()
        text = _paragraphs(10)
        chunks = estimator.split_to_fit(text, 150)

        assert len(chunks) > 1
        assert all(estimator.count(c) <= 150 for c in chunks)
        for i in range(10):
            assert any(f"Paragraph {i} " in c for c in chunks)
        # Paragraph boundaries are kept: no chunk starts mid-paragraph
        assert all(c.startswith("Paragraph ") for c in chunks)

    def test_oversized_paragraph_is_cut(self):
        estimator = TokenEstimator()
        text = "word " * 1000
        chunks = estimator.split_to_fit(text, 100)
        assert len(chunks) > 1
        assert all(estimator.count(c) <= 100 for c in chunks)

    def test_overlap_carries_tail(self):
        estimator = TokenEstimator()
        chunks = estimator.split_to_fit(_paragraphs(10), 150, overlap=10)
        assert len(chunks) > 1
        for previous, current in zip(chunks, chunks[1:]):
            assert current[:20] in previous
            assert estimator.count(current) <= 150

    def test_without_paragraphs(self):
        estimator = TokenEstimator()
        chunks = estimator.split_to_fit(_paragraphs(5), 50, preserve_paragraphs=False)
        assert "".join(chunks) == _paragraphs(5)
        assert all(estimator.count(c) <= 50 for c in chunks)


class TestTokenBudget:
    def test_defaults_allocate_within_total(self):
        budget = TokenBudget()
        allocation = budget.allocate()
        assert sum(allocation.values()) <= budget.total_tokens
        assert allocation[BudgetCategory.CONTENT.value] == 4000

    def test_minimums_exceeding_total_rejected(self):
        with pytest.raises(ValueError):
            TokenBudget(total_tokens=500, minimums={"task": 200, "content": 400})

    def test_fractions_over_one_rejected(self):
        with pytest.raises(ValueError):
            TokenBudget(allocations={"task": 0.6, "content": 0.6}, minimums={})

    @pytest.mark.parametrize("task_type", ["roadmap", "slides", "document", "research-analysis", "qa", "default"])
    def test_allocations_never_exceed_total(self, task_type):
        strategies = StrategyTable()
        for total in range(750, 20000, 173):
            budget = strategies.get_budget(task_type, total)
            allocation = budget.allocate()
            assert sum(allocation.values()) <= total
            for key, minimum in budget.minimums.items():
                assert allocation[key] >= minimum

    def test_floors_take_precedence(self):
        budget = StrategyTable().get_budget("roadmap", 800)
        allocation = budget.allocate()
        assert allocation["task"] == 200
        assert allocation["content"] == 500
        assert sum(allocation.values()) == 800

    def test_with_total_scales_floors(self):
        budget = StrategyTable().get_budget("roadmap", 100)
        assert sum(budget.minimums.values()) <= 100
        assert sum(budget.allocate().values()) <= 100
