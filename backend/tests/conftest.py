import json
import os
import shutil
import tempfile
from pathlib import Path

# Settings are read once at import time; point everything at throwaway
# locations before any postcraft module is imported.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="postcraft_pytest_"))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_SESSION_DIR / 'default.db'}")
os.environ.setdefault("ENCRYPTION_KEY", "postcraft-test-encryption-key")
os.environ.setdefault("MEDIA_DIR", str(_SESSION_DIR / "generated-audio"))
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CELERY_ENABLED", "false")
os.environ.setdefault("PRIMARY_AI_PROVIDER", "gemini")
os.environ.setdefault("SECONDARY_AI_PROVIDER", "openai")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from postcraft import db as db_module
from postcraft.db import Base
from postcraft.models import ContentSession, ContentVersion, SessionStatus, SessionWorkflow
from postcraft.services import media_adapter as media_registry
from postcraft.services import notifier as notifier_module
from postcraft.services import publisher_adapter as publisher_registry
from postcraft.services.credential_store import CredentialStore
from postcraft.services.llm_provider import LLMProvider, get_llm_provider, set_llm_provider
from postcraft.services.media_adapter import MediaAdapter, MediaStatus, MediaSubmission
from postcraft.services.publisher_adapter import PublisherAdapter, PublishResult
from postcraft.services.research_aggregator import ResearchAggregator
from postcraft.services.research_sources import (
    ForumComment,
    ForumPost,
    ResearchSources,
    SearchData,
    SearchResult,
    TrendsData,
)
from postcraft.services.task_supervisor import TaskHandle, TaskSupervisor, set_supervisor

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
GEMINI_KEY = "AIza-test-key-0123456789abcdef"


def pytest_sessionfinish(session, exitstatus):
    """Cleanup temporary test files after the test session."""
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


# =============================================================================
# Canned AI responses
# =============================================================================

BRIEF_RESPONSE = {
    "topicOverview": {
        "title": "AI Triage in Rural Clinics",
        "description": "How small clinics use AI triage to cut wait times.",
        "relevanceScore": 88,
        "trendingStatus": "rising",
    },
    "audienceInsights": {
        "primaryAudience": "Clinic managers",
        "painPoints": ["long queues", "staff shortages"],
        "goals": ["faster triage"],
        "knowledgeLevel": "intermediate",
        "commonQuestions": ["Is it safe?"],
    },
    "contentAngles": [
        {"angle": "Numbers first", "rationale": "managers trust data", "platforms": ["linkedin"], "estimatedEngagement": "high"}
    ],
    "keyMessages": ["AI shortens queues", "Humans stay in the loop"],
    "competitiveInsights": {"gapOpportunities": ["rural focus"], "popularFormats": ["case study"], "toneTrends": "educational"},
    "platformRecommendations": {
        "linkedin": {"format": "post", "tone": "professional", "keyPoints": ["data"], "hooks": ["Queues are a choice"]},
        "twitter": {"format": "thread", "tone": "punchy"},
        "blog": {"format": "howto", "structure": ["Problem", "Fix"], "seoKeywords": ["ai triage"]},
        "reelScript": {"hook": "Waiting 4 hours?", "keyMoments": ["before", "after"], "cta": "Follow", "duration": "30 seconds"},
    },
    "supportingData": {"statistics": ["40% shorter waits"], "examples": ["Clinic A"], "quotes": []},
}

NORMALIZE_RESPONSE = {
    "mainTopic": "AI triage",
    "keywords": ["ai triage", "clinic wait times"],
    "category": "Healthcare",
    "targetAudience": "Clinic managers",
    "relatedTerms": ["telehealth"],
}

QUESTIONS_RESPONSE = [
    {"question": f"Question {i}?", "purpose": f"purpose {i}", "category": "experience"} for i in range(1, 6)
]

LINKEDIN_RESPONSE = {
    "post": {
        "hook": "Queues are a choice.",
        "body": "We cut triage time by 40%.\n\nHere is how.",
        "cta": "What would you automate first?",
        "hashtags": ["#health", "#ai"],
    },
    "variants": [{"type": "short", "content": "Queues are a choice."}],
    "performanceTips": ["Post on Tuesday"],
}

TWITTER_RESPONSE = {
    "thread": [
        {"tweetNumber": 1, "content": "Rural clinics are drowning in queues.", "note": "hook"},
        {"tweetNumber": 2, "content": "AI triage cut waits by 40% in our pilot.", "note": "value"},
    ],
    "singleTweet": {"content": "AI triage cut clinic waits by 40%."},
    "hashtags": ["#ai"],
}

BLOG_RESPONSE = {
    "article": {
        "title": "How AI Triage Cuts Clinic Waits",
        "metaDescription": "A practical guide.",
        "introduction": "Waiting rooms are full.",
        "sections": [
            {"heading": "The problem", "content": "Staff are stretched thin."},
            {"heading": "The fix", "content": "Let software sort the queue."},
        ],
        "conclusion": "Start small.",
        "faqs": [{"question": "Is it safe?", "answer": "Clinicians review every case."}],
    },
    "seoMetadata": {"focusKeyword": "ai triage"},
    "readingTime": "5 minutes",
}

REEL_RESPONSE = {
    "script": {
        "hook": "Waiting four hours?",
        "body": [
            {"scene": 1, "duration": "3 sec", "visual": "crowded room", "voiceover": "This was us last year."},
            {"scene": 2, "duration": "4 sec", "visual": "dashboard", "voiceover": "Now software sorts the queue."},
        ],
        "cta": "Follow for the full story.",
    },
    "production": {"totalDuration": "30 seconds"},
}

IDEAS_RESPONSE = [
    {"title": "Triage myths", "description": "Five myths about AI triage."},
    {"title": "Pilot diary", "description": "What we learned in 90 days."},
    {"title": "Cost math", "description": "What AI triage really costs."},
]

IDEA_QUESTIONS_RESPONSE = ["Who is your reader?", "What result surprised you?"]

# Checked in order; the first marker found in the prompt wins
DEFAULT_RULES = [
    ("Return ONLY the modified content as a JSON object", LINKEDIN_RESPONSE),
    ("Return ONLY the modified content.", "Rewritten draft text."),
    ("Analyze this topic", NORMALIZE_RESPONSE),
    ("expert content strategist", BRIEF_RESPONSE),
    ("targeted questions", QUESTIONS_RESPONSE),
    ("Generate LinkedIn content", LINKEDIN_RESPONSE),
    ("Generate Twitter/X content", TWITTER_RESPONSE),
    ("Generate blog content", BLOG_RESPONSE),
    ("Generate short video content", REEL_RESPONSE),
    ("unique content ideas", IDEAS_RESPONSE),
    ("Based on this content idea", IDEA_QUESTIONS_RESPONSE),
    ("Refinement Questions & Answers", "Plain idea draft."),
]


class ScriptedLLM(LLMProvider):
    """LLM provider that answers by prompt marker and records every prompt."""

    name = "gemini"

    def __init__(self):
        self.rules = list(DEFAULT_RULES)
        self.prompts: list[str] = []

    def respond(self, marker: str, response) -> None:
        """Override the reply for prompts containing `marker`. Exceptions are raised."""
        self.rules.insert(0, (marker, response))

    def calls_with(self, marker: str) -> int:
        return sum(1 for p in self.prompts if marker in p)

    async def complete(self, prompt, credentials):
        self.prompts.append(prompt)
        for marker, response in self.rules:
            if marker in prompt:
                if isinstance(response, BaseException):
                    raise response
                if callable(response):
                    return response(prompt)
                return response if isinstance(response, str) else json.dumps(response)
        raise AssertionError(f"Unexpected prompt: {prompt[:120]}")


class FakeSources(ResearchSources):
    """Research sources with fixed data; set `fail` to the names that should raise."""

    def __init__(self, fail: tuple[str, ...] = ()):
        super().__init__()
        self.fail = set(fail)

    async def search_discussions(self, keywords, limit=50):
        if "discussions" in self.fail:
            raise RuntimeError("reddit unreachable")
        return [
            ForumPost(
                id="p1",
                title="Triage is a struggle at our clinic",
                content="",
                score=25,
                num_comments=4,
                comments=[ForumComment(body="Same problem here", score=3)],
            )
        ]

    async def fetch_trends(self, keywords):
        if "trends" in self.fail:
            raise RuntimeError("trends quota exceeded")
        return TrendsData(interest_over_time=[10] * 12, related_queries=["ai triage tools"], rising_topics=["nurse ai"])

    async def search_web(self, keywords):
        if "search" in self.fail:
            raise RuntimeError("serpapi down")
        return SearchData(
            organic=[SearchResult(title="AI triage guide", snippet="...")],
            people_also_ask=["Is AI triage safe?"],
        )


class FakePublisher(PublisherAdapter):
    platform = "wordpress"

    def __init__(self):
        super().__init__()
        self.result = PublishResult(success=True, remote_id="wp-1", remote_url="https://blog.example.com/?p=1")
        self.calls: list[tuple[str, dict]] = []

    async def publish(self, content, credentials, metadata=None):
        self.calls.append((content, dict(metadata or {})))
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class FakeMediaAdapter(MediaAdapter):
    """Async-style media provider whose poll answers come from a script."""

    provider = "heygen"

    def __init__(self):
        super().__init__()
        self.submission = MediaSubmission(status="processing", remote_id="vid-1")
        self.poll_script: list = []
        self.submitted: list[str] = []
        self.polls = 0

    async def submit(self, script, params, credentials):
        self.submitted.append(script)
        return self.submission

    async def poll(self, remote_id, credentials):
        self.polls += 1
        if not self.poll_script:
            return MediaStatus(status="processing")
        step = self.poll_script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def notify(self, user_id, event):
        self.events.append((user_id, event))
        return True

    def of_type(self, event_type: str) -> list[dict]:
        return [e["data"] for _, e in self.events if e["type"] == event_type]


class DeferredSupervisor(TaskSupervisor):
    """Records spawned chains instead of scheduling them; run them with run_pending()."""

    def __init__(self):
        super().__init__()
        self.spawned: list[str] = []
        self._queue: list = []

    def spawn(self, name, coro):
        self.spawned.append(name)
        self._queue.append(coro)
        return TaskHandle(id=len(self.spawned), name=name)

    async def run_pending(self):
        while self._queue:
            await self._queue.pop(0)

    def discard(self):
        for coro in self._queue:
            coro.close()
        self._queue.clear()


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def session_factory(tmp_path, monkeypatch):
    """Fresh SQLite database per test, also installed as the default session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(db_module, "AsyncSessionLocal", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Fakes
# =============================================================================


@pytest.fixture(autouse=True)
def notifications():
    recorder = RecordingNotifier()
    notifier_module.set_notifier(recorder)
    yield recorder
    notifier_module.set_notifier(None)


@pytest.fixture
async def supervisor():
    sup = TaskSupervisor()
    set_supervisor(sup)
    yield sup
    await sup.shutdown(timeout=5)
    set_supervisor(None)


@pytest.fixture
def deferred_supervisor():
    sup = DeferredSupervisor()
    yield sup
    sup.discard()


@pytest.fixture
def llm():
    original = {name: get_llm_provider(name) for name in ("gemini", "openai")}
    fake = ScriptedLLM()
    set_llm_provider("gemini", fake)
    yield fake
    for name, provider in original.items():
        set_llm_provider(name, provider)


@pytest.fixture
async def ai_integration(db, llm):
    return await CredentialStore(db).create_integration(USER_ID, "gemini", {"apiKey": GEMINI_KEY})


@pytest.fixture
def research():
    return ResearchAggregator(FakeSources())


@pytest.fixture
def fake_publisher():
    original = publisher_registry.get_publisher("wordpress")
    fake = FakePublisher()
    publisher_registry.register_publisher("wordpress", fake)
    yield fake
    publisher_registry.register_publisher("wordpress", original)


@pytest.fixture
def fake_media():
    original = media_registry.get_media_adapter("heygen")
    fake = FakeMediaAdapter()
    media_registry.register_media_adapter("heygen", fake)
    yield fake
    media_registry.register_media_adapter("heygen", original)


@pytest.fixture
def make_version(db):
    """Factory: a READY brief session owning one draft version."""

    async def _make(
        platform: str = "article",
        body: str = "A finished article body.",
        owner_id: str = USER_ID,
        status: str = SessionStatus.ready.value,
    ) -> ContentVersion:
        session = ContentSession(
            owner_id=owner_id,
            workflow=SessionWorkflow.brief.value,
            input_type="topic",
            input_payload={"value": "AI triage"},
            title="AI triage",
            status=status,
            meta={"kind": "pending"},
        )
        db.add(session)
        await db.flush()
        version = ContentVersion(session_id=session.id, platform=platform, body=body, meta={})
        db.add(version)
        await db.commit()
        await db.refresh(version)
        return version

    return _make


@pytest.fixture
def make_integration(db):
    async def _make(provider: str = "wordpress", credentials: dict | None = None, owner_id: str = USER_ID):
        credentials = credentials or {
            "wordpress": {"siteUrl": "https://blog.example.com", "username": "editor", "appPassword": "app-pass-1234"},
            "heygen": {"apiKey": "heygen-key-123456"},
            "elevenlabs": {"apiKey": "eleven-key-123456", "defaultVoiceId": "voice-1"},
        }.get(provider, {"accessToken": "token-123456789"})
        return await CredentialStore(db).create_integration(owner_id, provider, credentials)

    return _make
