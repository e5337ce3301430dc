from placement_capture.metadata import build_capture_metadata

BASE = dict(
    capture_id="42",
    channel="gdn",
    kind="placement",
    width=1920,
    height=1080,
    sha256="a" * 64,
    capture_version="capture:2025.01",
    captured_at="2025-01-01T00:00:00+00:00",
    page_url="https://news.example.com/article",
)


def test_build_capture_metadata_includes_optional_fields_when_provided():
    md = build_capture_metadata(
        **BASE,
        creative_url="https://cdn.example.com/creative.png",
        click_url="https://brand.example.com",
        slots_injected=2,
        fallback_used=False,
    )
    assert md["kind"] == "placement"
    assert md["width"] == "1920"
    assert md["creative_url"] == "https://cdn.example.com/creative.png"
    assert md["click_url"] == "https://brand.example.com"
    assert md["slots_injected"] == "2"
    assert md["fallback_used"] == "false"
    assert all(isinstance(v, str) for v in md.values())


def test_build_capture_metadata_omits_optional_fields_when_absent():
    md = build_capture_metadata(**BASE)
    assert "creative_url" not in md
    assert "click_url" not in md
    assert "slots_injected" not in md
    assert "fallback_used" not in md
    assert list(md)[:3] == ["capture_id", "channel", "kind"]


def test_zero_slots_injected_is_still_recorded():
    md = build_capture_metadata(**BASE, slots_injected=0, fallback_used=True)
    assert md["slots_injected"] == "0"
    assert md["fallback_used"] == "true"
