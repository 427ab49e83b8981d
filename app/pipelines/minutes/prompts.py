"""Prompt construction for the minutes summary.

The system prompt fixes the output contract (Markdown with a stable set of
sections); the user prompt carries the transcript and the aggregated
sentiment so the model can comment on the tone of the meeting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

# Bedrock context windows vary per model; the transcript is cut to fit the smallest we use.
MAX_TRANSCRIPT_CHARS = 60_000

SYSTEM_PROMPT = (
    "You write meeting minutes from a raw speech-to-text transcript. "
    "Write in the same language as the transcript. "
    "Answer in Markdown with exactly these level-2 sections, in this order: "
    "Summary, Decisions, Action items, Open questions, Tone. "
    "Under Action items list one item per line with owner and due date when the transcript names them. "
    "Write 'None' under a section that has no content. "
    "Do not invent participants, decisions or dates that are not in the transcript."
)


@dataclass(frozen=True)
class PromptBundle:
    system_prompt: str
    user_prompt: str


def _format_sentiment(sentiment: Mapping[str, Any] | None) -> str:
    if not sentiment:
        return "No sentiment analysis available."

    counts = sentiment.get("counts", {})
    averages = sentiment.get("average_scores", {})
    count_bits = ", ".join(f"{label}={counts[label]}" for label in sorted(counts))
    average_bits = ", ".join(f"{label}={averages[label]:.2f}" for label in sorted(averages))
    lines = [f"Overall sentiment: {sentiment.get('overall', 'UNKNOWN')}"]
    if count_bits:
        lines.append(f"Segments per sentiment: {count_bits}")
    if average_bits:
        lines.append(f"Average scores: {average_bits}")
    return "\n".join(lines)


def truncate_transcript(transcript: str, limit: int = MAX_TRANSCRIPT_CHARS) -> tuple[str, bool]:
    """Cut ``transcript`` to ``limit`` characters at a line boundary when possible."""

    if len(transcript) <= limit:
        return transcript, False
    head = transcript[:limit]
    cut = head.rfind("\n")
    if cut > limit // 2:
        head = head[:cut]
    return head, True


def build_summary_prompts(
    transcript: str,
    sentiment: Mapping[str, Any] | None = None,
    *,
    max_transcript_chars: int = MAX_TRANSCRIPT_CHARS,
) -> PromptBundle:
    """Return the system/user prompt pair for one meeting."""

    body, truncated = truncate_transcript(transcript.strip(), max_transcript_chars)
    sections = [
        "Sentiment analysis of the transcript segments:",
        _format_sentiment(sentiment),
        "",
        "Transcript (one segment per line):",
        body,
    ]
    if truncated:
        sections.append("[Transcript truncated; summarize the part shown.]")
    return PromptBundle(system_prompt=SYSTEM_PROMPT, user_prompt="\n".join(sections))


__all__ = ["PromptBundle", "build_summary_prompts", "truncate_transcript", "MAX_TRANSCRIPT_CHARS"]
