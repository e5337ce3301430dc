import asyncio

from placement_capture.challenge import PROBE_SCRIPT, ChallengeProbe, looks_like_challenge, wait_for_challenge

INTERSTITIAL = {"title": "Just a moment...", "text": "Checking your browser", "textLength": 40, "imageCount": 0}
ARTICLE = {"title": "Markets rally", "text": "Stocks rose on Tuesday " * 60, "textLength": 1400, "imageCount": 12}


def _sequence(*payloads):
    remaining = list(payloads)

    def handler(_markers):
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return handler


def test_text_signature_only_counts_on_thin_pages():
    assert looks_like_challenge(ChallengeProbe.from_payload(INTERSTITIAL))
    rich = dict(ARTICLE, text="Access denied to the archive, subscribers only. " + ARTICLE["text"])
    assert not looks_like_challenge(ChallengeProbe.from_payload(rich))


def test_marker_only_counts_on_thin_pages():
    thin = {"title": "", "text": "", "textLength": 10, "imageCount": 0, "markers": ["#challenge-form"]}
    assert looks_like_challenge(ChallengeProbe.from_payload(thin))
    rich = ChallengeProbe.from_payload(dict(ARTICLE, markers=['iframe[src*="challenges.cloudflare.com"]']))
    assert not looks_like_challenge(rich)


def test_article_with_embedded_widget_is_not_held(make_page):
    page = make_page({PROBE_SCRIPT: dict(ARTICLE, markers=['input[name="cf-turnstile-response"]'])})
    outcome = asyncio.run(wait_for_challenge(page, max_wait_ms=5000, poll_ms=1000))
    assert not outcome.detected
    assert page.waits == []


def test_normal_page_returns_immediately(make_page):
    page = make_page({PROBE_SCRIPT: ARTICLE})
    outcome = asyncio.run(wait_for_challenge(page, max_wait_ms=5000, poll_ms=1000))
    assert not outcome.detected
    assert outcome.waited_ms == 0
    assert page.waits == []


def test_waits_until_challenge_clears(make_page):
    page = make_page({PROBE_SCRIPT: _sequence(INTERSTITIAL, INTERSTITIAL, ARTICLE)})
    outcome = asyncio.run(wait_for_challenge(page, max_wait_ms=5000, poll_ms=1000))
    assert outcome.detected
    assert outcome.cleared
    assert outcome.waited_ms == 2000
    assert page.waits == [1000, 1000]


def test_gives_up_after_max_wait(make_page):
    page = make_page({PROBE_SCRIPT: INTERSTITIAL})
    outcome = asyncio.run(wait_for_challenge(page, max_wait_ms=3000, poll_ms=1000))
    assert outcome.detected
    assert not outcome.cleared
    assert outcome.waited_ms == 3000


def test_probe_errors_do_not_abort_the_capture(make_page):
    page = make_page({PROBE_SCRIPT: RuntimeError("Execution context was destroyed")})
    outcome = asyncio.run(wait_for_challenge(page, max_wait_ms=3000, poll_ms=1000))
    assert not outcome.detected
