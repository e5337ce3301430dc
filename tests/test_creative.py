import pytest
import requests

from placement_capture.creative import build_asset, fetch_creative, remote_asset, sniff_image

URL = "https://cdn.example.com/creative.png"


class _Response:
    def __init__(self, content=b"", status=200, content_type="image/png"):
        self.content = content
        self.status_code = status
        self.headers = {"Content-Type": content_type} if content_type else {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def test_build_asset_embeds_bytes_as_data_url(make_png):
    png = make_png(width=300, height=250)
    asset = build_asset(URL, png)
    assert asset.downloaded
    assert asset.src.startswith("data:image/png;base64,")
    assert asset.decode() == png
    assert (asset.width, asset.height) == (300, 250)
    assert asset.size_bytes == len(png)


def test_sniff_image_reads_format_when_header_is_useless(make_png):
    session = _Session(_Response(make_png(), content_type="application/octet-stream"))
    asset = fetch_creative(URL, http=session, timeout_s=5)
    assert asset.content_type == "image/png"
    assert session.requests == [(URL, 5)]
    assert sniff_image(b"not an image") == (None, None, None)


def test_fetch_creative_falls_back_to_remote_url():
    failures = [
        _Session(_Response(status=404)),
        _Session(error=requests.ConnectionError("connection refused")),
        _Session(_Response(b"")),
    ]
    for session in failures:
        asset = fetch_creative(URL, http=session)
        assert not asset.downloaded
        assert asset.src == URL


def test_fetch_creative_rejects_oversized_payload(make_png):
    asset = fetch_creative(URL, http=_Session(_Response(make_png())), max_bytes=16)
    assert not asset.downloaded


def test_remote_asset_cannot_be_decoded():
    with pytest.raises(ValueError):
        remote_asset(URL).decode()
