"""Tests for public URL resolution."""

import pytest

from hotserve.paths import ensure_slash, get_public_url, get_served_path


@pytest.mark.parametrize(
    ("path", "needs_slash", "expected"),
    [("/app", True, "/app/"), ("/app/", False, "/app"), ("/app/", True, "/app/")],
)
def test_ensure_slash(path: str, needs_slash: bool, expected: str) -> None:
    assert ensure_slash(path, needs_slash) == expected


def test_served_path_from_homepage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PUBLIC_URL", raising=False)

    assert get_served_path("https://example.com/shop") == "/shop/"
    assert get_served_path("https://example.com") == "/"
    assert get_served_path() == "/"


def test_environment_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PUBLIC_URL", "/cdn")

    assert get_public_url("https://example.com/shop") == "/cdn"
    assert get_served_path("https://example.com/shop") == "/cdn/"
