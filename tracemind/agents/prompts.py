"""Prompts for core-memory extraction, session summaries and rolling compression."""

EXTRACTION_PROMPT = """Extract stable user information from these messages. Return JSON:
{
  "user_facts": ["string facts about user, max 12"],
  "goals": [{"text": "goal", "started_at": "ISO date"}],
  "constraints": [{"type": "time|money|health|family|work|other", "description": "..."}],
  "commitments": [{"text": "something the user said they will do", "date": "ISO date or null"}],
  "themes": ["recurring topics, max 5"],
  "pending_topics": ["things the user started to talk about but did not finish"],
  "emotion_timeline": [{"emotion": "word", "context": "brief", "timestamp": "ISO"}],
  "contradictions": ["statements that conflict with something said earlier"]
}

Only include what's clearly stated. Keep facts concise."""

SESSION_SUMMARY_PROMPT = """Summarize this conversation session in 2-3 sentences. Focus on key topics discussed, user's emotional state, and any decisions or realizations. Keep it warm but concise."""

COMPRESSION_PROMPT = """You compress older parts of a long conversation into a rolling summary.

Write a compact bullet-style summary of the messages you are given. Preserve:
- names of people, pets and places
- dates and time references
- decisions the user made
- commitments and plans
- the emotional tone of the exchange

Do not invent details. Do not address the user. Return only the summary."""

COMPRESSION_PRIOR_TEMPLATE = """An earlier summary already covers the conversation before these messages:

{prior}

Integrate it with the new messages into one cohesive summary."""


def build_compression_prompt(prior_summary: str | None = None) -> str:
    """System prompt for a compression pass, folding in ``prior_summary`` when present."""
    if not prior_summary:
        return COMPRESSION_PROMPT
    return (
        COMPRESSION_PROMPT
        + "\n\n"
        + COMPRESSION_PRIOR_TEMPLATE.format(prior=prior_summary.strip())
    )
