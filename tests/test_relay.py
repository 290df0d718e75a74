"""
Tests for the relay and filename sanitization.
"""

import json

import pytest

from shortsdl.acquirer import ByteStream
from shortsdl.models import ERROR_MESSAGES, ErrorCode, ResolvedTarget
from shortsdl.relay import MidStreamError, relay, sanitize_filename

from .conftest import FakeBody


def _target(chunks, **kwargs):
    body = FakeBody(chunks)
    kwargs.setdefault("suggested_filename", "My_Video")
    return body, ResolvedTarget(byte_stream=ByteStream.adapt(body), **kwargs)


# ─── Filename sanitization ───────────────────────────────────────────────────

@pytest.mark.parametrize("title, expected", [
    ("My Video!", "My_Video"),
    ("  __hello   world__  ", "hello_world"),
    ("Ünïcödé title – part 2", "n_c_d_title_part_2"),
    ("already-safe_name", "already-safe_name"),
    (None, "short"),
    ("", "short"),
    ("!!!???***", "short"),
])
def test_sanitize_filename(title, expected):
    assert sanitize_filename(title) == expected


def test_sanitize_truncates_to_60_without_trailing_underscore():
    title = "a" * 59 + " b"
    result = sanitize_filename(title)
    assert result == "a" * 59
    assert len(sanitize_filename("x" * 200)) == 60


@pytest.mark.parametrize("title", [
    "My Video!",
    "a" * 59 + " b",
    "#shorts | funny cat 😺 compilation (2024) — best of",
    "!!!",
])
def test_sanitize_is_idempotent(title):
    once = sanitize_filename(title)
    assert sanitize_filename(once) == once


# ─── Relay ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_relay_sets_headers_and_streams_chunks():
    body, target = _target([b"one", b"two", b"three"], mime_type="video/webm")

    response = await relay(target)

    assert response.status_code == 200
    assert response.headers["content-type"] == "video/webm"
    assert response.headers["content-disposition"] == 'attachment; filename="My_Video.mp4"'
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["access-control-expose-headers"] == "Content-Disposition"

    chunks = [chunk async for chunk in response.body_iterator]
    assert chunks == [b"one", b"two", b"three"]
    assert body.closed


@pytest.mark.asyncio
async def test_error_before_headers_returns_json():
    body, target = _target([ConnectionError("reset by peer")])

    response = await relay(target)

    assert response.status_code == 500
    assert json.loads(response.body) == {"error": ERROR_MESSAGES[ErrorCode.MID_STREAM_ERROR]}
    assert body.closed


@pytest.mark.asyncio
async def test_error_after_headers_aborts_stream():
    body, target = _target([b"first", b"second", ConnectionError("reset by peer")])

    response = await relay(target)
    assert response.status_code == 200

    received = []
    with pytest.raises(MidStreamError):
        async for chunk in response.body_iterator:
            received.append(chunk)

    assert received == [b"first", b"second"]
    assert body.closed


@pytest.mark.asyncio
async def test_disconnect_releases_stream():
    """Closing the body iterator early (client went away) releases the upstream stream."""
    body, target = _target([b"first", b"second", b"third"])

    response = await relay(target)
    iterator = response.body_iterator
    assert await iterator.__anext__() == b"first"
    await iterator.aclose()

    assert body.closed


@pytest.mark.asyncio
async def test_on_close_waits_for_the_body():
    closes = []
    body, target = _target([b"first", b"second"])

    response = await relay(target, on_close=lambda: closes.append(True))
    assert closes == []

    chunks = [chunk async for chunk in response.body_iterator]
    assert chunks == [b"first", b"second"]
    assert closes == [True]


@pytest.mark.asyncio
async def test_on_close_runs_after_mid_stream_error():
    closes = []
    body, target = _target([b"first", ConnectionError("reset by peer")])

    response = await relay(target, on_close=lambda: closes.append(True))
    with pytest.raises(MidStreamError):
        async for _ in response.body_iterator:
            assert closes == []

    assert closes == [True]


@pytest.mark.asyncio
async def test_on_close_skipped_for_json_error():
    closes = []
    body, target = _target([ConnectionError("reset by peer")])

    response = await relay(target, on_close=lambda: closes.append(True))

    assert response.status_code == 500
    assert closes == []
