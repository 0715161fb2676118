"""Tests for the hotserve command line."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer import BadParameter, Exit
from typer.testing import CliRunner

from hotserve import __version__
from hotserve.__main__ import app
from hotserve.cli.serve import load_middleware, load_substitutions, parse_env_pairs
from hotserve.errors import PortInUseError

runner: CliRunner = CliRunner()


class TestSubstitutions:
    def test_env_pairs(self) -> None:
        assert parse_env_pairs(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}

    def test_env_pair_without_value(self) -> None:
        with pytest.raises(BadParameter):
            parse_env_pairs(["NOPE"])

    def test_env_file_then_pairs_then_public_url(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("PUBLIC_URL", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("TITLE=From file\nAPI=http://api\n")

        values = load_substitutions(env_file, ["TITLE=From flag"], "https://example.com/shop")

        assert values == {"TITLE": "From flag", "API": "http://api", "PUBLIC_URL": "/shop"}

    def test_root_public_url_is_empty(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("PUBLIC_URL", raising=False)

        assert load_substitutions(tmp_path / "absent.env", [], None) == {"PUBLIC_URL": ""}


class TestMiddlewareOption:
    def test_loads_attribute(self) -> None:
        from starlette.middleware.gzip import GZipMiddleware

        assert load_middleware("starlette.middleware.gzip:GZipMiddleware") is GZipMiddleware

    @pytest.mark.parametrize("spec", ["no_colon", "not_a_module_xyz:Thing", "json:Missing"])
    def test_invalid_specs_exit(self, spec: str) -> None:
        with pytest.raises(Exit):
            load_middleware(spec)


class TestServeCommand:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_serve_builds_config(self, tmp_path: Path) -> None:
        template = tmp_path / "index.html"
        template.write_text("<title>%TITLE%</title>")

        with patch("hotserve.cli.serve.run_dev_server", new=AsyncMock()) as run:
            result = runner.invoke(
                app,
                [
                    "serve",
                    "--template", str(template),
                    "--env", "TITLE=Shop",
                    "--port", "4000",
                    "--content", str(tmp_path),
                    "--no-open",
                    "--proxy", "http://localhost:8000",
                    "--build", "make",
                ],
            )

        assert result.exit_code == 0, result.output
        server, producers = run.await_args.args
        assert server.config.port == 4000
        assert server.config.open is False
        assert server.config.env["TITLE"] == "Shop"
        assert server.config.content == [tmp_path]
        assert server.proxy is not None
        assert [p.command for p in producers] == ["make"]

    def test_invalid_configuration_exits(self) -> None:
        result = runner.invoke(app, ["serve", "--protocol", "spdy"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_startup_error_exits_with_message(self) -> None:
        with patch(
            "hotserve.cli.serve.run_dev_server",
            new=AsyncMock(side_effect=PortInUseError("Some service is already running on port 3000.")),
        ):
            result = runner.invoke(app, ["serve", "--no-open"])

        assert result.exit_code == 1
        assert "already running on port 3000" in result.output
