"""
Learning Prompt Builders
=========================

Builds prompts for pattern extraction and article generation.

All prompt text lives here so the token budget used for batch sizing is
computed from the same template the extractor sends.
"""

from typing import List

from helpdesk.learning.domain.entities import ResolvedTicket
from helpdesk.learning.domain.schemas import ExtractedPattern

FIELD_PREVIEW_CHARS = 500


def _clip(text: str, limit: int = FIELD_PREVIEW_CHARS) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[: limit - 3] + "..."


class PatternPromptBuilder:
    """Prompt for extracting resolution patterns from a batch of resolved tickets."""

    SYSTEM_PROMPT = (
        "You are an expert knowledge management AI for an IT helpdesk. "
        "You turn resolved support tickets into reusable resolution patterns. "
        "Respond only with valid JSON."
    )

    TEMPLATE = """Analyze these resolved support tickets to identify common patterns and create actionable knowledge.

Resolved Tickets:
{tickets}

Identify resolution patterns and respond with a JSON array of patterns:
[
  {{
    "problemType": "Clear description of the problem type",
    "commonSolutions": ["solution1", "solution2"],
    "preventiveMeasures": ["prevention1", "prevention2"],
    "frequency": estimated_frequency_score_1_to_10,
    "averageResolutionTime": average_hours,
    "successRate": success_rate_0_to_100
  }}
]

Focus on recurring problem types, effective solutions, preventive measures
and common user mistakes. Limit to the top 5 most significant patterns."""

    @classmethod
    def summarize_ticket(cls, index: int, ticket: ResolvedTicket) -> str:
        hours = ticket.resolution_hours
        return "\n".join([
            f"{index}. Title: {ticket.title}",
            f"   Ticket: {ticket.id}",
            f"   Category: {ticket.category}",
            f"   Priority: {ticket.priority}",
            f"   Problem: {_clip(ticket.description)}",
            f"   Resolution: {_clip(ticket.resolution_text)}",
            f"   Time to resolve: {hours if hours is not None else 'unknown'} hours",
            f"   Comments: {_clip(ticket.transcript, 300)}",
            "---",
        ])

    @classmethod
    def build_prompt(cls, tickets: List[ResolvedTicket]) -> str:
        summaries = "\n".join(cls.summarize_ticket(i, t) for i, t in enumerate(tickets, start=1))
        return cls.TEMPLATE.format(tickets=summaries)

    @classmethod
    def base_prompt(cls) -> str:
        """The template with no tickets, for budgeting."""
        return cls.SYSTEM_PROMPT + cls.TEMPLATE.format(tickets="")

    @classmethod
    def build_messages(cls, tickets: List[ResolvedTicket]) -> List[dict]:
        return [
            {"role": "system", "content": cls.SYSTEM_PROMPT},
            {"role": "user", "content": cls.build_prompt(tickets)},
        ]


class ArticlePromptBuilder:
    """Prompt for turning a pattern (or a single resolved ticket) into an article."""

    SYSTEM_PROMPT = (
        "You are a technical writer creating knowledge base articles for non-technical users. "
        "Use clear, actionable language with specific steps. Respond only with valid JSON."
    )

    OUTPUT_SPEC = """Create a knowledge base article with this JSON structure:
{
  "title": "Clear, descriptive title (max 100 characters)",
  "summary": "One or two sentence summary (max 200 characters)",
  "content": "Markdown with sections: Problem, Cause, Step-by-step solution, Prevention",
  "category": "support|technical|howto|troubleshooting|faq",
  "tags": ["tag1", "tag2", "tag3"],
  "difficulty": "beginner|intermediate|advanced",
  "estimatedReadTime": estimated_minutes_to_read,
  "confidence": confidence_score_0_to_100
}
Use 3 to 5 tags."""

    @classmethod
    def build_from_pattern(cls, pattern: ExtractedPattern, category: str) -> str:
        return f"""Based on this resolution pattern, create a comprehensive, user-friendly article.

Resolution Pattern:
Title: {pattern.problem_type}
Category: {category}
Common Solutions: {", ".join(pattern.common_solutions) or "n/a"}
Preventive Measures: {", ".join(pattern.preventive_measures) or "n/a"}
Average Resolution Time: {pattern.average_resolution_time} hours
Success Rate: {pattern.success_rate}%

{cls.OUTPUT_SPEC}"""

    @classmethod
    def build_from_ticket(cls, ticket: ResolvedTicket) -> str:
        return f"""Based on this resolved support ticket, create a knowledge base article
that would let the next user with the same problem solve it themselves.

Title: {ticket.title}
Category: {ticket.category}
Priority: {ticket.priority}
Problem: {_clip(ticket.description, 1500)}
Resolution: {_clip(ticket.resolution_text, 1500)}

{cls.OUTPUT_SPEC}"""

    @classmethod
    def messages(cls, user_prompt: str) -> List[dict]:
        return [
            {"role": "system", "content": cls.SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]
