# chuk_prompt_experiments/context/token_estimator.py
"""
Token Estimator - character/structure based token counting.

No tokenizer dependency: the estimate starts from a characters-per-token
ratio and adds corrections for the things naive ratios under-count
(punctuation, digit runs, fenced code blocks, URLs). The result is then
scaled by a content-kind factor and a model-family factor.

All methods are pure. For a fixed content kind, adding characters never
lowers the estimate.
"""

from __future__ import annotations

import math
import re

from pydantic import BaseModel, Field

from chuk_prompt_experiments.config import DEFAULT_CHARS_PER_TOKEN, DEFAULT_MODEL_FAMILY

from .models import BudgetFit, CapacityEstimate, ContentKind, ModelFamily, TokenCount

# Model-family multipliers
MODEL_ADJUSTMENTS: dict[ModelFamily, float] = {
    ModelFamily.GEMINI: 1.0,
    ModelFamily.GPT: 0.9,
    ModelFamily.CLAUDE: 0.95,
    ModelFamily.DEFAULT: 1.0,
}

# Content-kind multipliers
CONTENT_ADJUSTMENTS: dict[ContentKind, float] = {
    ContentKind.CODE: 0.7,
    ContentKind.JSON: 0.75,
    ContentKind.MARKDOWN: 0.9,
    ContentKind.PROSE: 1.0,
    ContentKind.TECHNICAL: 0.85,
}

# Additive corrections
PUNCTUATION_WEIGHT = 0.3  # per non-word, non-space character
DIGIT_WEIGHT = 0.2  # per digit inside a numeric run
CODE_BLOCK_WEIGHT = 5  # per fenced block (delimiter tokens)
URL_WEIGHT = 10  # per URL

AVERAGE_WORD_LENGTH = 5

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_NUMBER_RE = re.compile(r"\d+")
_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_URL_RE = re.compile(r"https?://\S+")
_PARAGRAPH_RE = re.compile(r"\n\n+")


class TokenEstimatorConfig(BaseModel):
    """Configuration for the token estimator."""

    model_family: ModelFamily = Field(default=ModelFamily(DEFAULT_MODEL_FAMILY))
    chars_per_token: float = Field(default=DEFAULT_CHARS_PER_TOKEN, gt=0)


class TokenEstimator:
    """
    Approximate token counter.

    Usage::

        estimator = TokenEstimator()
        estimator.count("Hello world")                       # -> int
        estimator.count(source, ContentKind.CODE)
        estimator.fits_in_budget(text, 500).fits
        estimator.split_to_fit(long_text, 1000, overlap=50)
    """

    def __init__(self, config: TokenEstimatorConfig | None = None) -> None:
        self.config = config or TokenEstimatorConfig()

    # ------------------------------------------------------------------
    # Counting
    # ------------------------------------------------------------------

    def count(self, text: str | None, content_kind: ContentKind = ContentKind.PROSE) -> int:
        """Estimated token count for ``text``."""
        if not text:
            return 0
        base = self._estimate_base(text)
        return math.ceil(base * self._multiplier(content_kind))

    def count_detailed(self, text: str | None, content_kind: ContentKind = ContentKind.PROSE) -> TokenCount:
        if not text:
            return TokenCount(method="empty")
        return TokenCount(
            tokens=self.count(text, content_kind),
            characters=len(text),
            words=len(text.split()),
        )

    def count_many(self, texts: list[str], content_kind: ContentKind = ContentKind.PROSE) -> int:
        return sum(self.count(t, content_kind) for t in texts)

    def fits_in_budget(
        self,
        text: str | None,
        budget: int,
        content_kind: ContentKind = ContentKind.PROSE,
    ) -> BudgetFit:
        tokens = self.count(text, content_kind)
        return BudgetFit(
            fits=tokens <= budget,
            tokens=tokens,
            budget=budget,
            overage=max(0, tokens - budget),
            utilization=tokens / budget if budget > 0 else float("inf") if tokens else 0.0,
        )

    def estimate_capacity(
        self,
        token_budget: int,
        content_kind: ContentKind = ContentKind.PROSE,
    ) -> CapacityEstimate:
        """Approximate number of characters that fit in ``token_budget``."""
        effective_chars_per_token = self.config.chars_per_token / self._multiplier(content_kind)
        chars = max(0, math.floor(token_budget * effective_chars_per_token))
        return CapacityEstimate(
            token_budget=token_budget,
            estimated_characters=chars,
            estimated_words=chars // AVERAGE_WORD_LENGTH,
            content_kind=content_kind,
        )

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def split_to_fit(
        self,
        text: str,
        max_tokens: int,
        preserve_paragraphs: bool = True,
        overlap: int = 0,
        content_kind: ContentKind = ContentKind.PROSE,
    ) -> list[str]:
        """
        Split ``text`` into chunks of at most ``max_tokens`` estimated tokens.

        Chunks break on paragraph boundaries where possible. A paragraph
        larger than ``max_tokens`` on its own is cut by character capacity.
        With ``overlap`` > 0 each chunk starts with roughly that many tokens
        from the end of the previous chunk.
        """
        if not text:
            return []
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")

        capacity = self.estimate_capacity(max_tokens, content_kind).estimated_characters
        if not preserve_paragraphs:
            return self._split_by_chars(text, max(1, capacity), content_kind, max_tokens)

        chunks: list[str] = []
        current = ""

        for para in _PARAGRAPH_RE.split(text):
            if not para.strip():
                continue
            pieces = (
                self._split_by_chars(para, max(1, capacity), content_kind, max_tokens)
                if self.count(para, content_kind) > max_tokens
                else [para]
            )
            for piece in pieces:
                candidate = f"{current}\n\n{piece}" if current else piece
                if current and self.count(candidate, content_kind) > max_tokens:
                    chunks.append(current.strip())
                    carried = self._overlap_text(current, overlap, content_kind) if overlap > 0 else ""
                    current = f"{carried}\n\n{piece}" if carried else piece
                    if self.count(current, content_kind) > max_tokens:
                        current = piece
                else:
                    current = candidate

        if current.strip():
            chunks.append(current.strip())
        return chunks

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _estimate_base(self, text: str) -> float:
        tokens = len(text) / self.config.chars_per_token
        tokens += len(_PUNCTUATION_RE.findall(text)) * PUNCTUATION_WEIGHT
        tokens += sum(len(n) for n in _NUMBER_RE.findall(text)) * DIGIT_WEIGHT
        tokens += len(_CODE_BLOCK_RE.findall(text)) * CODE_BLOCK_WEIGHT
        tokens += len(_URL_RE.findall(text)) * URL_WEIGHT
        return tokens

    def _multiplier(self, content_kind: ContentKind) -> float:
        model = MODEL_ADJUSTMENTS.get(self.config.model_family, MODEL_ADJUSTMENTS[ModelFamily.DEFAULT])
        return model * CONTENT_ADJUSTMENTS.get(content_kind, 1.0)

    def _split_by_chars(
        self,
        text: str,
        chars: int,
        content_kind: ContentKind,
        max_tokens: int,
    ) -> list[str]:
        chunks: list[str] = []
        start = 0
        while start < len(text):
            end = min(len(text), start + chars)
            # Punctuation-dense text runs over the plain ratio; shrink until it fits
            while end - start > 1 and self.count(text[start:end], content_kind) > max_tokens:
                end = start + max(1, int((end - start) * 0.9))
            chunks.append(text[start:end])
            start = end
        return chunks

    def _overlap_text(self, text: str, overlap_tokens: int, content_kind: ContentKind) -> str:
        chars = self.estimate_capacity(overlap_tokens, content_kind).estimated_characters
        return text[-chars:] if chars > 0 else ""
