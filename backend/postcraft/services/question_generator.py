"""
Question Generator: clarifying questions from a brief (current workflow) or
from a selected idea (legacy workflow), plus legacy idea generation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from postcraft.errors import ParseError
from postcraft.services.brief_builder import Brief
from postcraft.services.llm_provider import AIClient

logger = logging.getLogger(__name__)

MIN_QUESTIONS = 5
MAX_QUESTIONS = 7
QUESTION_CATEGORIES = ("experience", "audience", "insights", "examples")


@dataclass
class QuestionDraft:
    text: str
    category: str = "general"
    purpose: str | None = None


@dataclass
class IdeaDraft:
    title: str
    description: str = ""


BRIEF_QUESTIONS_PROMPT = """Based on this content brief, generate {count} targeted questions to gather insights from the user.

TOPIC: {title}
AUDIENCE: {audience}
PAIN POINTS: {pain_points}

Generate questions that will help create personalized content. Focus on:
- User's personal experience with the topic
- Specific examples or case studies they can share
- Their unique perspective or insights
- Target audience considerations

Return ONLY a JSON array (no markdown):
[
  {{
    "question": "question text",
    "purpose": "why this question helps",
    "category": "experience|audience|insights|examples"
  }}
]"""

IDEA_QUESTIONS_PROMPT = """Based on this content idea: {title} - {description}
Generate {count} clarifying questions to refine the content.
Questions should help gather more details, target audience, tone, etc.
Return ONLY a valid JSON array of strings: ["question1", "question2", ...]"""

IDEAS_PROMPT = """Generate {count} unique content ideas based on: {title} - {content}
For each idea provide: title and description.
Return ONLY a valid JSON array: [{{"title": "...", "description": "..."}}]"""


def _to_question(item) -> QuestionDraft | None:
    if isinstance(item, str):
        text = item.strip()
        return QuestionDraft(text=text) if text else None
    if not isinstance(item, dict):
        return None
    text = str(item.get("question") or item.get("text") or "").strip()
    if not text:
        return None
    category = str(item.get("category") or "general").strip().lower()
    purpose = item.get("purpose")
    return QuestionDraft(text=text, category=category, purpose=str(purpose) if purpose else None)


def parse_questions(data: list, limit: int = MAX_QUESTIONS) -> list[QuestionDraft]:
    questions = [q for q in (_to_question(item) for item in data) if q is not None]
    if not questions:
        raise ParseError("AI returned no usable questions")
    return questions[:limit]


class QuestionGenerator:

    def __init__(self, ai: AIClient):
        self.ai = ai

    async def from_brief(self, user_id: str, brief: Brief, count: int | None = None) -> list[QuestionDraft]:
        if count is not None:
            count = min(max(count, MIN_QUESTIONS), MAX_QUESTIONS)
        prompt = BRIEF_QUESTIONS_PROMPT.format(
            count=count or f"{MIN_QUESTIONS}-{MAX_QUESTIONS}",
            title=brief.topic_overview.title,
            audience=brief.audience_insights.primary_audience,
            pain_points=", ".join(brief.audience_insights.pain_points),
        )
        data = await self.ai.call_ai_json(user_id, prompt, expect=list)
        questions = parse_questions(data)
        logger.info(f"[questions] {len(questions)} questions from brief for user {user_id}")
        return questions

    async def from_idea(self, user_id: str, title: str, description: str, count: int = 5) -> list[QuestionDraft]:
        prompt = IDEA_QUESTIONS_PROMPT.format(title=title, description=description, count=count)
        data = await self.ai.call_ai_json(user_id, prompt, expect=list)
        return parse_questions(data)

    async def generate_ideas(self, user_id: str, title: str, content: str, count: int = 3) -> list[IdeaDraft]:
        prompt = IDEAS_PROMPT.format(count=count, title=title, content=content[:4000])
        data = await self.ai.call_ai_json(user_id, prompt, expect=list)
        ideas = []
        for item in data:
            if isinstance(item, dict) and str(item.get("title") or "").strip():
                ideas.append(IdeaDraft(title=str(item["title"]).strip()[:255], description=str(item.get("description") or "")))
        if not ideas:
            raise ParseError("AI returned no usable ideas")
        return ideas
