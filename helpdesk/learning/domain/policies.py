"""
Learning Policies
==================

Pure functions deciding how much the pipeline sends to the model and
whether a lone ticket is worth an article.
"""

from typing import List

from helpdesk.config import MAX_EXTRACTION_BATCH
from helpdesk.governance.domain import estimate_tokens
from helpdesk.learning.domain.entities import ResolvedTicket
from helpdesk.learning.domain.prompts import PatternPromptBuilder

# Tokens kept free for the model's JSON answer
OUTPUT_RESERVE_TOKENS = 500

RICH_SOLUTION_CHARS = 1500
STRUCTURED_COMMENT_STEPS = 6


def extraction_batch_size(max_tokens_per_request: int, sample: List[ResolvedTicket]) -> int:
    """
    How many tickets fit in one extraction prompt.

    (max tokens - base prompt - output reserve) / tokens per ticket, where
    tokens per ticket is the largest summary in the sample, capped at
    MAX_EXTRACTION_BATCH. A result below MIN_EXTRACTION_BATCH means no
    extraction batch fits the request cap (0 when not even one ticket does);
    the caller then learns from the ticket alone.
    """
    base = estimate_tokens(PatternPromptBuilder.base_prompt())
    available = max_tokens_per_request - base - OUTPUT_RESERVE_TOKENS
    per_ticket = max(
        (estimate_tokens(PatternPromptBuilder.summarize_ticket(i, t)) for i, t in enumerate(sample, 1)),
        default=0
    )
    if per_ticket <= 0:
        return MAX_EXTRACTION_BATCH
    return max(0, min(MAX_EXTRACTION_BATCH, available // per_ticket))


def resolution_quality_score(ticket: ResolvedTicket) -> float:
    """
    0..1 score of how useful a single ticket's resolution is on its own.

    0.7 weight on richness (resolution length vs 1500 chars) and 0.3 on
    structure (comment steps vs 6).
    """
    richness = min(1.0, len(ticket.resolution_text) / RICH_SOLUTION_CHARS)
    steps = sum(1 for c in ticket.comments if c.body and c.body.strip())
    structure = min(1.0, steps / STRUCTURED_COMMENT_STEPS)
    return round(0.7 * richness + 0.3 * structure, 4)
