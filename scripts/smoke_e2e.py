#!/usr/bin/env python3
"""
Smoke E2E test against a running postcraft server.

Without GEMINI_API_KEY only the plumbing is checked: health, integrations,
session creation and the analysis chain reaching a settled status (FAILED is
expected when no AI key is configured). With a key the brief workflow runs
through questions and answers to drafts. Nothing is published.

Env vars:
  BASE_URL        (default http://localhost:8000)
  SMOKE_USER_ID   (default smoke-<timestamp>)
  GEMINI_API_KEY  (optional, enables the full workflow)
  TIMEOUT_SEC     (default 300)
  POLL_INTERVAL   (default 3)
"""
from __future__ import annotations

import json
import os
import sys
import time
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
SMOKE_TAG = f"smoke-{int(time.time())}"
USER_ID = os.environ.get("SMOKE_USER_ID", SMOKE_TAG)
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
TIMEOUT_SEC = int(os.environ.get("TIMEOUT_SEC", "300"))
POLL_INTERVAL = int(os.environ.get("POLL_INTERVAL", "3"))

SETTLED = {"QNA", "FAILED"}

# ── Helpers ──────────────────────────────────────────────────

class SmokeError(Exception):
    pass


def _headers() -> dict[str, str]:
    return {"Content-Type": "application/json", "X-User-Id": USER_ID}


def _req(method: str, path: str, body: dict | None = None, expect: int | None = None) -> dict | list:
    url = f"{BASE_URL}{path}"
    data = json.dumps(body).encode() if body is not None else None
    req = Request(url, data=data, headers=_headers(), method=method)
    try:
        with urlopen(req, timeout=60) as resp:
            raw = resp.read().decode()
            return json.loads(raw) if raw else {}
    except HTTPError as e:
        raw = e.read().decode()[:500]
        if e.code == expect:
            return json.loads(raw) if raw else {}
        raise SmokeError(f"{method} {path} -> {e.code}: {raw}")
    except URLError as e:
        raise SmokeError(f"{method} {path} -> URLError: {e}")


def GET(path: str):
    return _req("GET", path)


def POST(path: str, body: dict | None = None, expect: int | None = None):
    return _req("POST", path, body, expect)


def DELETE(path: str):
    return _req("DELETE", path)


def step(name: str):
    print(f"\n{'='*60}")
    print(f"  STEP: {name}")
    print(f"{'='*60}")


def ok(msg: str):
    print(f"  ✅ {msg}")


def fail(msg: str):
    print(f"  ❌ {msg}")
    raise SmokeError(msg)


# ── Steps ────────────────────────────────────────────────────

def step1_health():
    step("1. Health check")
    if GET("/ping").get("status") != "ok":
        fail("/ping did not answer ok")
    ok("API is up")
    scheduler = GET("/api/scheduler/status")
    ok(f"Scheduler running={scheduler['running']} jobs={scheduler['jobs_count']}")


def step2_validation_envelope():
    step("2. Validation error envelope")
    err = POST("/api/integrations", {"provider": "openai", "credentials": {"apiKey": "bad"}}, expect=400)
    if err.get("success") is not False or err.get("error", {}).get("code") != "INVALID_API_KEY_FORMAT":
        fail(f"Unexpected error body: {err}")
    ok("Bad OpenAI key rejected with INVALID_API_KEY_FORMAT")


def step3_integration() -> int | None:
    step("3. AI integration")
    if not GEMINI_API_KEY:
        ok("GEMINI_API_KEY not set, running without AI")
        return None
    integration = POST("/api/integrations", {"provider": "gemini", "credentials": {"apiKey": GEMINI_API_KEY}})
    if GEMINI_API_KEY in json.dumps(integration):
        fail("Integration response leaked the raw key")
    ok(f"Integration #{integration['id']} created, key masked as {integration['credentials'].get('apiKey')}")
    return integration["id"]


def step4_create_session() -> int:
    step("4. Create brief session")
    created = POST("/api/content/sessions", {"topic": "AI triage in rural clinics", "niche": "Healthcare"})
    ok(f"Session #{created['sessionId']} status={created['status']}")
    return created["sessionId"]


def step5_wait_for_analysis(session_id: int) -> str:
    step("5. Wait for analysis")
    deadline = time.time() + TIMEOUT_SEC
    status = "ANALYZING"
    while time.time() < deadline:
        current = GET(f"/api/content/sessions/{session_id}/status")
        status = current["status"]
        print(f"  ⏳ status={status} (t-{int(deadline - time.time())}s)", end="\r")
        if status in SETTLED:
            print()
            if current.get("hasError"):
                ok(f"Settled with error: {current.get('error')}")
            else:
                ok(f"Settled at {status}")
            return status
        time.sleep(POLL_INTERVAL)
    print()
    fail(f"Analysis still {status} after {TIMEOUT_SEC}s")


def step6_answer_and_generate(session_id: int):
    step("6. Answer questions and wait for drafts")
    detail = GET(f"/api/content/sessions/{session_id}")
    questions = detail.get("questions", [])
    if not questions:
        fail("No questions were generated")
    answers = [{"question_id": q["id"], "answer": "Our pilot cut waiting time by 40%."} for q in questions]
    accepted = POST(f"/api/content/sessions/{session_id}/answers", {"answers": answers})
    ok(f"Saved {accepted['answersSaved']} answer(s), status={accepted['status']}")

    deadline = time.time() + TIMEOUT_SEC
    status = accepted["status"]
    while status == "GENERATING" and time.time() < deadline:
        time.sleep(POLL_INTERVAL)
        status = GET(f"/api/content/sessions/{session_id}/status")["status"]
        print(f"  ⏳ status={status} (t-{int(deadline - time.time())}s)", end="\r")
    print()
    if status == "GENERATING":
        fail(f"Generation still running after {TIMEOUT_SEC}s")

    generated = GET(f"/api/content/sessions/{session_id}/generated")
    made = sorted(generated.get("content", {}))
    errors = generated.get("generation_errors", {})
    if not made:
        fail(f"No drafts generated ({status}), errors: {errors}")
    ok(f"Drafts for {made}, errors: {errors or 'none'}")


def step7_cleanup(session_id: int, integration_id: int | None):
    step("7. Cleanup")
    DELETE(f"/api/content/sessions/{session_id}")
    ok(f"Session #{session_id} deleted")
    if integration_id is not None:
        DELETE(f"/api/integrations/{integration_id}")
        ok(f"Integration #{integration_id} deleted")


def main():
    print(f"\n🔬 Smoke E2E Test: {BASE_URL}")
    print(f"   USER={USER_ID}  AI={'gemini' if GEMINI_API_KEY else 'none'}  TIMEOUT={TIMEOUT_SEC}s  POLL={POLL_INTERVAL}s\n")

    try:
        step1_health()
        step2_validation_envelope()
        integration_id = step3_integration()
        session_id = step4_create_session()
        status = step5_wait_for_analysis(session_id)

        if integration_id is None:
            if status != "FAILED":
                fail(f"Expected FAILED without an AI integration, got {status}")
        elif status == "FAILED":
            fail("Analysis failed with a configured AI integration")
        else:
            step6_answer_and_generate(session_id)

        step7_cleanup(session_id, integration_id)

    except SmokeError as e:
        print(f"\n{'='*60}")
        print(f"  ❌ FAIL: {e}")
        print(f"{'='*60}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\n  ⏹ Interrupted")
        sys.exit(130)

    print("\n  ✅ SMOKE PASSED\n")


if __name__ == "__main__":
    main()
