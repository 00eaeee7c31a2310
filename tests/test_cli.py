"""Tests for the comfyui-dispatch CLI."""

import base64
import json

import pytest

from comfyui_dispatcher import cli
from comfyui_dispatcher import dispatcher as dispatcher_module
from comfyui_dispatcher.client import RawResponse


@pytest.fixture
def patched_dispatcher(monkeypatch, fake_backend, backend_env):
    """Route the CLI's Dispatcher to a fake backend answering with ``response``."""

    def _patch(response):
        backend = fake_backend(response)
        real = dispatcher_module.Dispatcher

        def factory(timeout=None):
            return real(env=backend_env, client_factory=backend, timeout=timeout)

        monkeypatch.setattr(dispatcher_module, "Dispatcher", factory)
        return backend

    return _patch


def _stdout_json(capsys):
    return json.loads(capsys.readouterr().out)


class TestExitCodes:
    """Error code to exit code mapping."""

    @pytest.mark.parametrize("code,expected", [
        ("CONFIGURATION_ERROR", cli.EXIT_CONFIG),
        ("VALIDATION_ERROR", cli.EXIT_VALIDATION),
        ("ENDPOINT_NOT_FOUND", cli.EXIT_NOT_FOUND),
        ("NETWORK_ERROR", cli.EXIT_CONNECTION),
        ("UPSTREAM_UNAVAILABLE", cli.EXIT_CONNECTION),
        ("MALFORMED_RESPONSE", cli.EXIT_ERROR),
        ("SOMETHING_ELSE", cli.EXIT_ERROR),
    ])
    def test_mapping(self, code, expected):
        assert cli._exit_code_for_error(code) == expected


class TestGenerate:
    """generate subcommand."""

    def test_success(self, patched_dispatcher, ok_response, capsys):
        backend = patched_dispatcher(ok_response)
        code = cli.main(["generate", "--model", "Flux-Krea", "--prompt", "a fox", "--seed", "3"])

        assert code == cli.EXIT_OK
        out = _stdout_json(capsys)
        assert out["artifact"].startswith("data:image/png;base64,")
        assert out["template"] == "flux_krea_t2i"
        assert backend.calls[0]["workflow"]["45"]["inputs"]["text"] == "a fox"

    def test_reference_images_are_base64(self, patched_dispatcher, ok_response, tmp_path, capsys):
        backend = patched_dispatcher(ok_response)
        image = tmp_path / "ref.png"
        image.write_bytes(b"\x89PNG fake")

        code = cli.main(["generate", "--model", "Flux-Kontext", "--prompt", "edit", "--image", str(image)])

        assert code == cli.EXIT_OK
        sent = backend.calls[0]["workflow"]["142"]["inputs"]["image"]
        assert base64.b64decode(sent) == b"\x89PNG fake"

    def test_missing_image_file(self, patched_dispatcher, ok_response, capsys):
        patched_dispatcher(ok_response)
        code = cli.main(["generate", "--model", "Flux-Kontext", "--prompt", "x", "--image", "/nope.png"])
        assert code == cli.EXIT_NOT_FOUND
        assert _stdout_json(capsys)["code"] == "NOT_FOUND"

    def test_backend_failure_exit_code(self, patched_dispatcher, capsys):
        patched_dispatcher(RawResponse(503, ""))
        code = cli.main(["generate", "--model", "Flux-Krea", "--prompt", "x"])
        assert code == cli.EXIT_CONNECTION
        assert _stdout_json(capsys)["isError"] is True

    def test_output_file_written(self, patched_dispatcher, tmp_path, capsys):
        patched_dispatcher(RawResponse(200, json.dumps({"images": [base64.b64encode(b"PNGDATA").decode()]})))
        target = tmp_path / "out.png"

        code = cli.main(["generate", "--model", "Flux-Krea", "--prompt", "x", "--output", str(target)])

        assert code == cli.EXIT_OK
        assert target.read_bytes() == b"PNGDATA"
        assert _stdout_json(capsys)["artifact"] == str(target)

    def test_batch_numbered_outputs(self, patched_dispatcher, tmp_path, capsys):
        patched_dispatcher(RawResponse(200, json.dumps({"images": [base64.b64encode(b"X").decode()]})))
        target = tmp_path / "out.png"

        code = cli.main([
            "generate", "--model", "Flux-Krea", "--prompt", "x",
            "--batch", "2", "--seed", "1", "--output", str(target),
        ])

        assert code == cli.EXIT_OK
        out = _stdout_json(capsys)
        assert out["completed"] == 2
        assert (tmp_path / "out_00.png").exists()
        assert (tmp_path / "out_01.png").exists()

    def test_incomplete_registry(self, monkeypatch, capsys):
        from comfyui_dispatcher.errors import ConfigurationError

        def factory(timeout=None):
            raise ConfigurationError("Model registry is incomplete: Flux-Dev: no adapter registered")

        monkeypatch.setattr(dispatcher_module, "Dispatcher", factory)
        code = cli.main(["generate", "--model", "Flux-Dev", "--prompt", "x"])
        assert code == cli.EXIT_CONFIG
        assert _stdout_json(capsys)["code"] == "CONFIGURATION_ERROR"


class TestDiscovery:
    """models, templates and check subcommands."""

    def test_models(self, monkeypatch, capsys):
        monkeypatch.setenv("Flux_Krea_URL", "http://krea")
        assert cli.main(["models"]) == cli.EXIT_OK
        out = _stdout_json(capsys)
        assert out["models"][0]["model_id"] == "Flux-Krea"

    def test_templates_filtered(self, capsys):
        assert cli.main(["templates", "--model", "Flux-Kontext"]) == cli.EXIT_OK
        out = _stdout_json(capsys)
        assert out["total"] == 2
        assert {t["variant"] for t in out["templates"]} == {"base", "stitch"}

    def test_check(self, capsys):
        assert cli.main(["--pretty", "check"]) == cli.EXIT_OK
        assert _stdout_json(capsys) == {"ok": True, "problems": []}
