"""Tests for api/covers.py -- artwork lookups and downloads with mocked HTTP."""

import io
from unittest.mock import MagicMock, patch

import httpx
from PIL import Image

from audiobook_curator.api.covers import (
    audible_artwork_urls,
    download_image,
    image_dimensions,
    itunes_artwork_urls,
    open_library_artwork_urls,
)
from audiobook_curator.models import CoverSource


def _png(width=600, height=900):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


def _response(content=b"", content_type="image/png", payload=None):
    mock_response = MagicMock()
    mock_response.content = content
    mock_response.headers = {"content-type": content_type}
    mock_response.json.return_value = payload
    return mock_response


class TestImageDimensions:
    def test_png(self):
        assert image_dimensions(_png(320, 480)) == (320, 480)

    def test_garbage(self):
        assert image_dimensions(b"not an image") == (0, 0)


class TestDownloadImage:
    @patch("audiobook_curator.api.covers.httpx.get")
    def test_success(self, mock_get):
        data = _png(1200, 1200) + b"\x00" * 1024
        mock_get.return_value = _response(data, "image/png; charset=binary")

        image = download_image("https://x/cover.png", CoverSource.ITUNES)

        assert image.mime_type == "image/png"
        assert (image.width, image.height) == (1200, 1200)
        assert image.source == CoverSource.ITUNES
        assert image.data == data

    @patch("audiobook_curator.api.covers.httpx.get")
    def test_not_an_image(self, mock_get):
        mock_get.return_value = _response(b"<html>" * 500, "text/html")
        assert download_image("https://x/page", CoverSource.ITUNES) is None

    @patch("audiobook_curator.api.covers.httpx.get")
    def test_placeholder_rejected(self, mock_get):
        mock_get.return_value = _response(b"GIF89a" + b"\x00" * 37, "image/gif")
        assert download_image("https://x/tiny.gif", CoverSource.AUDIBLE) is None

    @patch("audiobook_curator.api.covers.httpx.get")
    def test_http_error(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("refused")
        assert download_image("https://x/cover.jpg", CoverSource.OPEN_LIBRARY) is None


class TestItunes:
    @patch("audiobook_curator.api.covers.httpx.get")
    def test_upsizes_artwork(self, mock_get):
        mock_get.return_value = _response(
            payload={"results": [{"artworkUrl100": "https://is1.mzstatic.com/a/100x100bb.jpg"}, {}]}
        )
        assert itunes_artwork_urls("Dune", "Frank Herbert") == [
            "https://is1.mzstatic.com/a/2048x2048bb.jpg"
        ]
        assert mock_get.call_args[1]["params"]["term"] == "Dune Frank Herbert"

    @patch("audiobook_curator.api.covers.httpx.get")
    def test_error(self, mock_get):
        mock_get.side_effect = httpx.ReadTimeout("slow")
        assert itunes_artwork_urls("Dune") == []


class TestAudible:
    def test_catalog_url_first_then_asin_sizes(self):
        urls = audible_artwork_urls("B002V1OF70", "https://catalog/cover.jpg")
        assert urls[0] == "https://catalog/cover.jpg"
        assert urls[1] == "https://m.media-amazon.com/images/I/B002V1OF70._SL2400_.jpg"
        assert len(urls) == 3

    def test_nothing(self):
        assert audible_artwork_urls(None) == []


class TestOpenLibrary:
    def test_isbn_direct(self):
        assert open_library_artwork_urls("Dune", isbn="9780441172719") == [
            "https://covers.openlibrary.org/b/isbn/9780441172719-L.jpg"
        ]

    @patch("audiobook_curator.api.covers.httpx.get")
    def test_search(self, mock_get):
        mock_get.return_value = _response(payload={"docs": [{"cover_i": 42}, {"title": "no cover"}]})
        assert open_library_artwork_urls("Dune", "Frank Herbert") == [
            "https://covers.openlibrary.org/b/id/42-L.jpg"
        ]
