"""
Platform Draft Generator.

Each supported platform is one `PlatformSpec` in `_SPECS`: the prompt
instructions, the JSON shape the model must return, the pydantic schema the
reply is validated against, and how to measure and flatten the result.

`generate_all` fans out one AI call per platform and never lets one platform's
failure cancel the others; the caller gets a per-platform content-or-error map.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from postcraft.errors import ParseError, ServiceError, ValidationError
from postcraft.models import ContentPlatform
from postcraft.services.brief_builder import Brief, CamelModel
from postcraft.services.llm_provider import AIClient, extract_json

logger = logging.getLogger(__name__)


# ── Output schemas ───────────────────────────────────────────

class LinkedInPost(CamelModel):
    hook: str
    body: str
    cta: str = ""
    hashtags: list[str] = Field(default_factory=list)


class Variant(CamelModel):
    type: str
    content: str


class LinkedInContent(CamelModel):
    post: LinkedInPost
    variants: list[Variant] = Field(default_factory=list)
    performance_tips: list[str] = Field(default_factory=list)


class Tweet(CamelModel):
    tweet_number: int | None = None
    content: str
    note: str | None = None


class SingleTweet(CamelModel):
    content: str
    alternative: str | None = None


class TwitterContent(CamelModel):
    thread: list[Tweet] = Field(min_length=1)
    single_tweet: SingleTweet | None = None
    quote_tweet: dict[str, Any] | None = None
    hashtags: list[str] = Field(default_factory=list)


class ArticleSection(CamelModel):
    heading: str
    content: str
    key_takeaway: str | None = None


class Faq(CamelModel):
    question: str
    answer: str


class Article(CamelModel):
    title: str
    meta_description: str = ""
    introduction: str
    sections: list[ArticleSection] = Field(min_length=1)
    conclusion: str = ""
    faqs: list[Faq] = Field(default_factory=list)


class BlogContent(CamelModel):
    article: Article
    seo_metadata: dict[str, Any] = Field(default_factory=dict)
    reading_time: str | None = None
    target_word_count: str | None = None


class Scene(CamelModel):
    scene: int | None = None
    duration: str | None = None
    visual: str = ""
    voiceover: str = ""
    on_screen_text: str | None = None


class ReelScript(CamelModel):
    hook: str
    body: list[Scene] = Field(min_length=1)
    cta: str = ""


class ReelContent(CamelModel):
    script: ReelScript
    production: dict[str, Any] = Field(default_factory=dict)
    platforms: dict[str, Any] = Field(default_factory=dict)


# ── Metadata and rendering ───────────────────────────────────

def _words(text: str) -> int:
    return len(text.split())


def _linkedin_text(c: LinkedInContent) -> str:
    parts = [c.post.hook, c.post.body, c.post.cta, " ".join(c.post.hashtags)]
    return "\n\n".join(p for p in parts if p)


def _twitter_text(c: TwitterContent) -> str:
    return "\n\n".join(t.content for t in c.thread)


def _blog_text(c: BlogContent) -> str:
    parts = [c.article.introduction]
    for section in c.article.sections:
        parts.append(f"<h2>{section.heading}</h2>")
        parts.append(section.content)
    if c.article.conclusion:
        parts.append(c.article.conclusion)
    return "\n\n".join(parts)


def _reel_text(c: ReelContent) -> str:
    lines = [c.script.hook]
    lines.extend(scene.voiceover for scene in c.script.body if scene.voiceover)
    if c.script.cta:
        lines.append(c.script.cta)
    return "\n".join(lines)


def _linkedin_meta(c: LinkedInContent) -> dict:
    text = _linkedin_text(c)
    return {"character_count": len(text), "word_count": _words(text)}


def _twitter_meta(c: TwitterContent) -> dict:
    return {"thread_length": len(c.thread), "total_characters": sum(len(t.content) for t in c.thread)}


def _blog_meta(c: BlogContent) -> dict:
    text = " ".join([c.article.introduction, *(s.content for s in c.article.sections), c.article.conclusion])
    return {"word_count": _words(text), "section_count": len(c.article.sections)}


def _reel_meta(c: ReelContent) -> dict:
    return {"duration": c.production.get("totalDuration", "unknown"), "scene_count": len(c.script.body)}


# ── Platform registry ────────────────────────────────────────

@dataclass(frozen=True)
class PlatformSpec:
    key: str
    content_platform: ContentPlatform
    label: str
    schema: type[BaseModel]
    instructions: str
    shape: dict
    measure: Callable[[Any], dict]
    render: Callable[[Any], str]
    title: Callable[[Any], str | None] = lambda content: None


_SPECS: dict[str, PlatformSpec] = {
    "linkedin": PlatformSpec(
        key="linkedin",
        content_platform=ContentPlatform.linkedin,
        label="LinkedIn",
        schema=LinkedInContent,
        instructions=(
            "- Uses industry-specific terminology relevant to {niche}\n"
            "- References challenges common in the {niche} sector\n"
            "- Follows LinkedIn best practices (engaging hook, value-packed body, clear CTA)"
        ),
        shape={
            "post": {"hook": "first line that stops scrolling", "body": "main content, paragraphs separated by \\n\\n",
                     "cta": "clear call to action", "hashtags": ["#tag1", "#tag2", "#tag3"]},
            "variants": [{"type": "short", "content": "250 characters max"},
                         {"type": "medium", "content": "500 characters"},
                         {"type": "long", "content": "1000 characters"}],
            "performanceTips": ["tip 1", "tip 2", "tip 3"],
        },
        measure=_linkedin_meta,
        render=_linkedin_text,
    ),
    "twitter": PlatformSpec(
        key="twitter",
        content_platform=ContentPlatform.twitter,
        label="Twitter/X",
        schema=TwitterContent,
        instructions=(
            "- Uses {niche}-specific hashtags and trends\n"
            "- Keeps every tweet under 280 characters\n"
            "- Creates a cohesive thread that tells a story"
        ),
        shape={
            "thread": [{"tweetNumber": 1, "content": "<280 chars", "note": "hook tweet"},
                       {"tweetNumber": 2, "content": "<280 chars", "note": "value point"},
                       {"tweetNumber": 3, "content": "<280 chars", "note": "conclusion/CTA"}],
            "singleTweet": {"content": "standalone tweet <280 chars", "alternative": "alternative version"},
            "quoteTweet": {"quote": "quote to share", "commentary": "your commentary"},
            "hashtags": ["#relevant1", "#relevant2"],
        },
        measure=_twitter_meta,
        render=_twitter_text,
    ),
    "blog": PlatformSpec(
        key="blog",
        content_platform=ContentPlatform.article,
        label="blog",
        schema=BlogContent,
        instructions=(
            "- Uses SEO keywords specific to {niche}\n"
            "- Provides actionable insights for {niche} professionals\n"
            "- Follows a clear structure with headed sections"
        ),
        shape={
            "article": {
                "title": "SEO-optimized title", "metaDescription": "155 character meta description",
                "introduction": "2-3 paragraphs",
                "sections": [{"heading": "Section heading", "content": "section content", "keyTakeaway": "main point"}],
                "conclusion": "2 paragraphs wrapping up with CTA",
                "faqs": [{"question": "relevant FAQ", "answer": "answer"}],
            },
            "seoMetadata": {"focusKeyword": "primary keyword", "keywords": ["keyword"], "slug": "url-slug"},
            "readingTime": "8-10 minutes",
            "targetWordCount": "1500-2000 words",
        },
        measure=_blog_meta,
        render=_blog_text,
        title=lambda c: c.article.title,
    ),
    "reel_script": PlatformSpec(
        key="reel_script",
        content_platform=ContentPlatform.reel_script,
        label="short video",
        schema=ReelContent,
        instructions=(
            "- Hooks viewers in the first 2 seconds\n"
            "- Uses visual language appropriate for {niche}\n"
            "- Includes on-screen text suggestions\n"
            "- Adapts well to Instagram, TikTok, YouTube Shorts"
        ),
        shape={
            "script": {
                "hook": "Opening line (0-2 seconds)",
                "body": [{"scene": 1, "duration": "3-5 sec", "visual": "what to show",
                          "voiceover": "what to say", "onScreenText": "text overlay"}],
                "cta": "Clear call to action",
            },
            "production": {"totalDuration": "30-45 seconds", "suggestedMusic": "upbeat|calm|energetic",
                           "visualStyle": "visual aesthetic", "transitions": ["transition style"]},
            "platforms": {"instagram": {"caption": "caption", "hashtags": ["#tag"]},
                          "tiktok": {"caption": "caption"},
                          "youtube": {"title": "title", "description": "description"}},
        },
        measure=_reel_meta,
        render=_reel_text,
    ),
}

DRAFT_PLATFORMS: tuple[str, ...] = tuple(_SPECS)

_ALIASES = {"article": "blog", "reel": "reel_script", "reelscript": "reel_script", "reel-script": "reel_script"}

# Publishing caps used by auto-fix
LENGTH_LIMITS = {ContentPlatform.twitter.value: 280, ContentPlatform.linkedin.value: 3000}
DEFAULT_LENGTH_LIMIT = 5000


def get_spec(platform: str) -> PlatformSpec | None:
    key = (platform or "").strip().lower()
    return _SPECS.get(_ALIASES.get(key, key))


def spec_for_content_platform(content_platform: str) -> PlatformSpec | None:
    for spec in _SPECS.values():
        if spec.content_platform.value == content_platform:
            return spec
    return None


def to_content_platform(platform: str) -> ContentPlatform:
    spec = get_spec(platform)
    if spec:
        return spec.content_platform
    key = (platform or "").strip().lower().replace("-", "_")
    key = {"youtube": "yt_script", "podcast": "podcast_script"}.get(key, key)
    try:
        return ContentPlatform(key)
    except ValueError as exc:
        supported = ", ".join(p.value for p in ContentPlatform)
        raise ValidationError(
            f"Invalid platform: {platform}",
            code="INVALID_PLATFORM",
            field="platform",
            user_message=f"Invalid platform. Supported: {supported}",
        ) from exc


@dataclass
class QA:
    question: str
    answer: str


@dataclass
class PlatformError:
    error: str
    code: str = "GENERATION_FAILED"

    def to_dict(self) -> dict:
        return {"error": self.error, "code": self.code}


def format_answers(answers: list[QA]) -> str:
    if not answers:
        return "No additional user insights provided."
    return "\n\n".join(f"Q{i}: {qa.question}\nA{i}: {qa.answer}" for i, qa in enumerate(answers, start=1))


GENERATE_PROMPT = """Generate {label} content for the {niche} industry.

NICHE: {niche}
TOPIC: {title}
DESCRIPTION: {description}
TARGET AUDIENCE: {audience}
PAIN POINTS: {pain_points}
KEY MESSAGES: {key_messages}

PLATFORM RECOMMENDATIONS:
{recommendations}

USER INSIGHTS:
{answers}
{modifications}
Create content that:
{instructions}

Return ONLY a JSON object (no markdown):
{shape}"""


def serialize(content: BaseModel) -> str:
    return json.dumps(content.model_dump(mode="json", by_alias=True, exclude_none=True), ensure_ascii=False)


def parse_body(content_platform: str, body: str) -> BaseModel | None:
    """Structured content for a stored body, or None for plain-text drafts."""
    spec = spec_for_content_platform(content_platform)
    if spec is None:
        return None
    try:
        return spec.schema.model_validate_json(body)
    except PydanticValidationError:
        return None


@dataclass
class RenderedContent:
    text: str
    title: str | None = None


def render(content_platform: str, body: str) -> RenderedContent:
    """Flatten a stored draft body into publishable text."""
    spec = spec_for_content_platform(content_platform)
    structured = parse_body(content_platform, body)
    if spec is None or structured is None:
        return RenderedContent(text=(body or "").strip())
    return RenderedContent(text=spec.render(structured).strip(), title=spec.title(structured))


class PlatformContentGenerator:

    def __init__(self, ai: AIClient):
        self.ai = ai

    def build_prompt(
        self,
        spec: PlatformSpec,
        brief: Brief,
        answers: list[QA],
        niche: str,
        modifications: str | None = None,
    ) -> str:
        recommendation = getattr(brief.platform_recommendations, spec.key)
        return GENERATE_PROMPT.format(
            label=spec.label,
            niche=niche,
            title=brief.topic_overview.title,
            description=brief.topic_overview.description,
            audience=brief.audience_insights.primary_audience,
            pain_points="; ".join(brief.audience_insights.pain_points),
            key_messages="; ".join(brief.key_messages),
            recommendations=json.dumps(recommendation.model_dump(by_alias=True, exclude_defaults=True), indent=2),
            answers=format_answers(answers),
            modifications=f"\nREQUESTED CHANGES: {modifications}\n" if modifications else "",
            instructions=spec.instructions.format(niche=niche),
            shape=json.dumps(spec.shape, indent=2),
        )

    async def generate(
        self,
        user_id: str,
        platform: str,
        brief: Brief,
        answers: list[QA],
        niche: str,
        modifications: str | None = None,
    ) -> BaseModel:
        spec = get_spec(platform)
        if spec is None:
            raise ValidationError(f"Unsupported draft platform: {platform}", field="platform")

        data = await self.ai.call_ai_json(user_id, self.build_prompt(spec, brief, answers, niche, modifications), expect=dict)
        try:
            return spec.schema.model_validate(data)
        except PydanticValidationError as exc:
            raise ParseError(
                f"AI {spec.key} content does not match the expected structure",
                details={"platform": spec.key, "errors": exc.errors(include_url=False, include_context=False, include_input=False)[:5]},
            ) from exc

    async def generate_all(
        self,
        user_id: str,
        brief: Brief,
        answers: list[QA],
        niche: str,
        platforms: tuple[str, ...] = DRAFT_PLATFORMS,
    ) -> dict[str, BaseModel | PlatformError]:
        # One credential lookup up front; the fan-out below shares this client
        await self.ai.resolve(user_id)
        results = await asyncio.gather(
            *(self.generate(user_id, p, brief, answers, niche) for p in platforms),
            return_exceptions=True,
        )
        out: dict[str, BaseModel | PlatformError] = {}
        for platform, result in zip(platforms, results):
            if isinstance(result, ServiceError):
                out[platform] = PlatformError(error=result.message, code=result.code)
            elif isinstance(result, Exception):
                out[platform] = PlatformError(error=str(result) or type(result).__name__)
            elif isinstance(result, BaseException):
                raise result
            else:
                out[platform] = result
        failed = [p for p, r in out.items() if isinstance(r, PlatformError)]
        logger.info(f"[drafts] user={user_id} generated {len(out) - len(failed)}/{len(out)} platforms, failed={failed or 'none'}")
        return out

    @staticmethod
    def metadata(platform: str, content: BaseModel, **extra) -> dict:
        spec = get_spec(platform)
        meta = {
            "platform": spec.key,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "generation_method": "brief_analysis",
            "enhanced_with_analysis": True,
        }
        meta.update(spec.measure(content))
        meta.update(extra)
        return meta

    async def _rewrite_body(self, user_id: str, content_platform: str, body: str, instruction: str) -> str:
        spec = spec_for_content_platform(content_platform)
        if spec is not None and parse_body(content_platform, body) is not None:
            prompt = (
                f"{instruction}\n\n{body}\n\n"
                "Return ONLY the modified content as a JSON object with exactly the same structure and keys."
            )
            data = extract_json(await self.ai.call_ai(user_id, prompt), expect=dict)
            try:
                return serialize(spec.schema.model_validate(data))
            except PydanticValidationError as exc:
                raise ParseError(f"AI rewrite of {spec.key} content lost its structure") from exc

        text = (await self.ai.call_ai(user_id, f"{instruction}\n\n{body}\n\nReturn ONLY the modified content.")).strip()
        if not text:
            raise ParseError("AI returned empty content")
        return text

    async def rewrite(
        self,
        user_id: str,
        content_platform: str,
        body: str,
        action: str,
        *,
        tone: str | None = None,
        length: str | None = None,
    ) -> str:
        if action == "change_tone":
            instruction = f"Rewrite the following content with a {tone or 'professional'} tone. Keep the same information but adjust the style:"
        elif action == "change_length":
            if length not in ("shorter", "longer"):
                raise ValidationError("length must be 'shorter' or 'longer'", field="length")
            instruction = (
                "Make it more concise (50% shorter):" if length == "shorter"
                else "Expand it with more details (50% longer):"
            )
        elif action == "improve":
            instruction = "Improve the following content by making it more engaging, clear, and professional:"
        else:
            raise ValidationError(
                f"Unknown regenerate action: {action}",
                field="action",
                user_message="Action must be one of change_tone, change_length, improve.",
            )
        return await self._rewrite_body(user_id, content_platform, body, instruction)

    async def auto_fix(self, user_id: str, content_platform: str, body: str, violation_type: str) -> str:
        label = content_platform.upper()
        if violation_type == "length":
            limit = LENGTH_LIMITS.get(content_platform, DEFAULT_LENGTH_LIMIT)
            instruction = f"The following content exceeds the {label} character limit of {limit}. Shorten it while keeping the key message:"
        elif violation_type == "tone":
            instruction = "The following content has an inappropriate tone. Make it more professional and appropriate:"
        elif violation_type == "formatting":
            instruction = f"Fix the formatting issues in the following content for {label}:"
        elif violation_type == "hashtags":
            count = "2-3" if content_platform == ContentPlatform.twitter.value else "3-5"
            instruction = f"Add {count} relevant hashtags to this {label} content:"
        else:
            raise ValidationError(
                f"Unknown violation type: {violation_type}",
                field="violationType",
                user_message="Violation type must be one of length, tone, formatting, hashtags.",
            )
        return await self._rewrite_body(user_id, content_platform, body, instruction)

    async def generate_plain(
        self,
        user_id: str,
        content_platform: str,
        idea_title: str,
        idea_description: str,
        answers: list[QA],
    ) -> str:
        """Legacy single-prompt draft used when no research brief is available."""
        task = {
            ContentPlatform.article.value: "Write a 800-word blog article",
            ContentPlatform.twitter.value: "Write a Twitter thread (max 5 tweets, 280 chars each)",
            ContentPlatform.linkedin.value: "Write a LinkedIn post (max 3000 chars)",
            ContentPlatform.reel_script.value: "Write a 30-60 second reel script",
        }.get(content_platform, f"Write content for {content_platform}")
        answers_text = "\n\n".join(f"Q: {qa.question}\nA: {qa.answer}" for qa in answers)
        prompt = (
            f"Context:\nIdea: {idea_title} - {idea_description}\n\n"
            f"Refinement Questions & Answers:\n{answers_text}\n\n"
            f"Task:\n{task}.\nReturn only the content text."
        )
        text = (await self.ai.call_ai(user_id, prompt)).strip()
        if not text:
            raise ParseError("AI returned empty content")
        return text
