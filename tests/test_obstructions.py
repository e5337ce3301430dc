import asyncio

from placement_capture.obstructions import (
    HIDE_SCRIPT,
    OBSTRUCTION_SNAPSHOT_SCRIPT,
    OverlayNode,
    OverlaySnapshot,
    clear_obstructions,
    is_protected,
    plan_hidden_refs,
)


def _snapshot(*nodes):
    return OverlaySnapshot(viewport_width=1920, viewport_height=1080, nodes=tuple(nodes))


def test_curated_matches_are_hidden():
    refs = plan_hidden_refs(_snapshot(OverlayNode(ref=0, tag="div", class_name="cookie-banner", matched=True)))
    assert refs == [0]


def test_protected_nodes_survive_a_match():
    nodes = [
        OverlayNode(ref=0, tag="div", class_name="popup", matched=True, injected=True),
        OverlayNode(ref=1, tag="ins", class_name="adsbygoogle modal", matched=True, ad_markup=True),
        OverlayNode(ref=2, tag="header", class_name="floating-header", matched=True),
        OverlayNode(ref=3, tag="div", id="main-content", class_name="overlay", matched=True, child_count=12),
        OverlayNode(ref=4, tag="div", class_name="modal", matched=True, text_length=4000),
        OverlayNode(ref=5, tag="div", class_name="consent", matched=True, hidden=True),
    ]
    assert all(is_protected(n) for n in nodes)
    assert plan_hidden_refs(_snapshot(*nodes)) == []


def test_high_fixed_layers_and_backdrops_are_hidden():
    nodes = [
        OverlayNode(ref=0, tag="div", position="fixed", z_index=100000, width=400, height=200),
        OverlayNode(ref=1, tag="div", position="fixed", z_index=10, width=400, height=200),
        OverlayNode(ref=2, tag="div", position="absolute", background_alpha=0.6, width=1900, height=1000),
        OverlayNode(ref=3, tag="div", position="absolute", background_alpha=0.6, width=600, height=1000),
        OverlayNode(ref=4, tag="div", position="fixed", opacity=0.5, width=1920, height=600),
    ]
    assert plan_hidden_refs(_snapshot(*nodes)) == [0, 2, 4]


def test_overlay_node_parses_rgba_and_z_index():
    node = OverlayNode.from_payload(
        {"ref": 3, "tag": "DIV", "zIndex": "auto", "backgroundColor": "rgba(0, 0, 0, 0.5)", "opacity": "1"}
    )
    assert node.tag == "div"
    assert node.z_index is None
    assert node.background_alpha == 0.5
    assert OverlayNode.from_payload({"ref": 0, "zIndex": "2000", "backgroundColor": "rgb(1, 2, 3)"}).background_alpha == 1.0


class _Dom:
    """Just enough DOM for the snapshot/hide round trip."""

    def __init__(self, elements):
        self.elements = elements
        self.markers = {}

    def snapshot(self, args):
        nodes = []
        for ref, el in enumerate(self.elements):
            self.markers[f"{args['token']}-{ref}"] = el
            nodes.append({"ref": ref, "matched": True, "hidden": el.get("hidden", False), **el["attrs"]})
        return {"viewportWidth": 1920, "viewportHeight": 1080, "nodes": nodes}

    def hide(self, args):
        count = 0
        for marker in args["markers"]:
            el = self.markers.get(marker)
            if el is None or el.get("hidden"):
                continue
            el["hidden"] = True
            count += 1
        return count


def test_clearing_twice_hides_nothing_new(make_page):
    dom = _Dom(
        [
            {"attrs": {"tag": "div", "className": "cookie-notice"}},
            {"attrs": {"tag": "div", "className": "paywall"}},
            {"attrs": {"tag": "article", "className": "popup-article"}},
        ]
    )
    page = make_page({OBSTRUCTION_SNAPSHOT_SCRIPT: dom.snapshot, HIDE_SCRIPT: dom.hide})

    assert asyncio.run(clear_obstructions(page)) == 2
    assert asyncio.run(clear_obstructions(page)) == 0
    assert [el.get("hidden", False) for el in dom.elements] == [True, True, False]


def test_clear_obstructions_swallows_page_errors(make_page):
    page = make_page({OBSTRUCTION_SNAPSHOT_SCRIPT: RuntimeError("execution context was destroyed")})
    assert asyncio.run(clear_obstructions(page)) == 0
