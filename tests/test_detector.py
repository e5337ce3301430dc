import asyncio

from placement_capture.config import DetectionPolicy
from placement_capture.detector import (
    SNAPSHOT_SCRIPT,
    DetectedSlot,
    DomNode,
    DomSnapshot,
    SlotKind,
    detect_ad_slots,
    rank_slots,
    score_confidence,
    select_slots,
)


def _node(ref, tag="div", **kw):
    kw.setdefault("width", 300)
    kw.setdefault("height", 250)
    kw.setdefault("y", 100)
    kw.setdefault("selector", f'[data-pc-slot="t-{ref}"]')
    return DomNode(ref=ref, tag=tag, **kw)


def _snapshot(*nodes, viewport_height=900):
    return DomSnapshot(viewport_height=viewport_height, nodes=tuple(nodes))


def _slot(width, height, confidence=100, kind=SlotKind.GENERIC_AD_CONTAINER):
    return DetectedSlot(
        selector="[x]", tag_name="div", width=width, height=height, x=0, y=0, kind=kind, confidence=confidence, is_fixed=False
    )


def test_rank_slots_orders_by_confidence_descending():
    slots = rank_slots(
        _snapshot(
            _node(0, class_name="sponsor", width=120, height=60),
            _node(1, "ins", class_name="adsbygoogle"),
            _node(2, "iframe", id="google_ads_iframe_1", y=2000),
        )
    )
    confidences = [s.confidence for s in slots]
    assert confidences == sorted(confidences, reverse=True)
    assert slots[0].kind == SlotKind.GOOGLE_AD_TAG


def test_adsense_tag_outranks_larger_banner_div():
    slots = rank_slots(
        _snapshot(
            _node(0, class_name="banner", width=970),
            _node(1, "ins", class_name="adsbygoogle"),
        )
    )
    assert [s.tag_name for s in slots] == ["ins", "div"]
    assert slots[0].confidence == 100 + 30 + 10
    assert slots[1].confidence == 70 + 30 + 10


def test_fixed_position_costs_forty_points():
    base = dict(width=728, height=90, top=10, viewport_height=900)
    assert score_confidence(70, is_fixed=True, **base) - score_confidence(70, is_fixed=False, **base) == -40

    slots = rank_slots(
        _snapshot(
            _node(0, class_name="ad-banner", position="static"),
            _node(1, class_name="ad-banner", position="fixed"),
            _node(2, class_name="ad-banner", position="sticky"),
        )
    )
    by_ref = {s.selector: s for s in slots}
    static = by_ref['[data-pc-slot="t-0"]']
    assert by_ref['[data-pc-slot="t-1"]'].confidence == static.confidence - 40
    assert by_ref['[data-pc-slot="t-2"]'].is_fixed


def test_score_confidence_area_and_viewport_bands():
    assert score_confidence(0, width=300, height=250, top=0, is_fixed=False, viewport_height=900) == 40
    assert score_confidence(0, width=728, height=90, top=0, is_fixed=False, viewport_height=900) == 35
    assert score_confidence(0, width=200, height=80, top=0, is_fixed=False, viewport_height=900) == 25
    assert score_confidence(0, width=100, height=50, top=950, is_fixed=False, viewport_height=900) == -25


def test_zero_viewport_height_falls_back_to_default():
    slots = rank_slots(_snapshot(_node(0, "ins", class_name="adsbygoogle", y=850), viewport_height=0))
    assert slots[0].confidence == 100 + 30 + 10


def test_hidden_and_tiny_elements_are_excluded():
    slots = rank_slots(
        _snapshot(
            _node(0, class_name="ad-slot", display="none"),
            _node(1, class_name="ad-slot", visibility="hidden"),
            _node(2, class_name="ad-slot", opacity=0.0),
            _node(3, class_name="ad-slot", width=40, height=300),
        )
    )
    assert slots == []


def test_claimed_element_is_not_reconsidered_after_rejection():
    # The ins is claimed by the platform-tag pass even though it is too small,
    # so the class heuristic pass must not pick it up again.
    slots = rank_slots(_snapshot(_node(0, "ins", class_name="adsbygoogle ad-slot", width=10, height=10)))
    assert slots == []


def test_google_iframe_and_parent_are_both_slots():
    slots = rank_slots(
        _snapshot(
            _node(0, "div", width=320, height=260),
            _node(1, "iframe", id="aswift_0", parent_ref=0),
        )
    )
    assert {s.kind for s in slots} == {SlotKind.GOOGLE_AD_IFRAME}
    assert [s.tag_name for s in slots] == ["iframe", "div"]


def test_generic_iframe_with_ad_hint_scores_higher_than_plain():
    hinted = rank_slots(_snapshot(_node(0, "iframe", src="https://cdn.mobon.net/frame")))
    plain = rank_slots(_snapshot(_node(0, "iframe", src="https://widgets.example.com/frame")))
    assert hinted[0].confidence - plain[0].confidence == 20


def test_video_embeds_are_not_ad_slots():
    slots = rank_slots(_snapshot(_node(0, "iframe", src="https://www.youtube.com/embed/xyz", width=640, height=360)))
    assert slots == []


def test_iab_size_match_requires_media_and_little_text():
    with_media = rank_slots(_snapshot(_node(0, "div", width=310, height=240, media_count=1, text_length=12)))
    wordy = rank_slots(_snapshot(_node(0, "div", width=310, height=240, media_count=1, text_length=800)))
    assert with_media[0].kind == SlotKind.IAB_SIZE_MATCH
    assert wordy == []


def test_select_slots_applies_minimum_size():
    ranked = [_slot(300, 250, 140), _slot(120, 60, 130), _slot(728, 70, 120)]
    kept = select_slots(ranked)
    assert [(s.width, s.height) for s in kept] == [(300, 250)]


def test_select_slots_falls_back_to_largest_raw_candidate():
    ranked = [_slot(150, 60, 140), _slot(180, 75, 100), _slot(60, 30, 90)]
    kept = select_slots(ranked)
    assert len(kept) == 1
    assert (kept[0].width, kept[0].height) == (180, 75)
    assert select_slots([]) == []


def test_select_slots_threshold_is_configurable():
    policy = DetectionPolicy(min_slot_width=100, min_slot_height=50)
    assert len(select_slots([_slot(120, 60)], policy)) == 1


def test_detect_ad_slots_reads_snapshot_from_page(make_page):
    payload = {
        "viewportHeight": 1080,
        "nodes": [
            {"ref": 0, "tag": "ins", "className": "adsbygoogle", "width": 300, "height": 250, "y": 50, "selector": "[a]"},
            {"ref": 1, "tag": "div", "className": "banner", "width": 120, "height": 40, "y": 50, "selector": "[b]"},
        ],
    }
    page = make_page({SNAPSHOT_SCRIPT: payload})
    slots = asyncio.run(detect_ad_slots(page))
    assert [s.selector for s in slots] == ["[a]"]
    (args,) = page.scripts_called(SNAPSHOT_SCRIPT)
    assert args["slotAttribute"] == "data-pc-slot"
    assert [300, 250, 30] in args["sizes"]
