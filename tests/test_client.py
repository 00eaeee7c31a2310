"""
Tests for backend URL resolution and the HTTP client.
No network: urlopen is patched throughout.
"""

import io
import json
import socket
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from comfyui_dispatcher.client import ComfyUIClient, RawResponse
from comfyui_dispatcher.errors import ConfigurationError, NetworkError
from comfyui_dispatcher.model_registry import get_profile
from comfyui_dispatcher.router import resolve_base_url


def _http_response(status, body):
    response = MagicMock()
    response.status = status
    response.read.return_value = body.encode()
    response.__enter__.return_value = response
    return response


class TestResolveBaseUrl:
    """Base URL lookup from environment-style config."""

    def test_strips_trailing_slashes(self):
        profile = get_profile("Flux-Kontext")
        assert resolve_base_url(profile, {"Kontext_fp8_URL": "http://k.local:8188///"}) == "http://k.local:8188"

    def test_unset_is_configuration_error(self):
        profile = get_profile("Flux-Dev")
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_base_url(profile, {})
        assert exc_info.value.details == {"model_id": "Flux-Dev", "env_var": "Flux_Dev_URL"}
        assert "Flux_Dev_URL" in exc_info.value.suggestion

    def test_blank_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            resolve_base_url(get_profile("Flux-Dev"), {"Flux_Dev_URL": "   "})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("Flux_Krea_URL", "http://krea.local/")
        assert resolve_base_url(get_profile("Flux-Krea")) == "http://krea.local"

    def test_no_network_call(self):
        with patch("urllib.request.urlopen") as mock_urlopen:
            with pytest.raises(ConfigurationError):
                resolve_base_url(get_profile("Flux-Dev"), {})
        mock_urlopen.assert_not_called()


class TestSubmit:
    """POST of one workflow."""

    @patch("comfyui_dispatcher.client.urllib.request.urlopen")
    def test_posts_prompt_wrapper(self, mock_urlopen):
        mock_urlopen.return_value = _http_response(200, '{"images": ["abc"]}')
        client = ComfyUIClient("http://backend:8188", timeout=30)

        result = client.submit({"1": {"class_type": "A", "inputs": {}}})

        assert result == RawResponse(200, '{"images": ["abc"]}')
        req = mock_urlopen.call_args[0][0]
        assert req.full_url == "http://backend:8188/prompt"
        assert req.get_method() == "POST"
        assert req.get_header("Content-type") == "application/json"
        assert json.loads(req.data) == {"prompt": {"1": {"class_type": "A", "inputs": {}}}}
        assert mock_urlopen.call_args[1] == {"timeout": 30}

    @patch("comfyui_dispatcher.client.urllib.request.urlopen")
    def test_no_timeout_by_default(self, mock_urlopen, monkeypatch):
        monkeypatch.delenv("COMFYUI_DISPATCH_TIMEOUT", raising=False)
        mock_urlopen.return_value = _http_response(200, "{}")
        ComfyUIClient("http://backend").submit({})
        assert mock_urlopen.call_args[1] == {}

    def test_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("COMFYUI_DISPATCH_TIMEOUT", "12.5")
        assert ComfyUIClient("http://backend").timeout == 12.5

    @patch("comfyui_dispatcher.client.urllib.request.urlopen")
    def test_http_error_becomes_response(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "http://backend/prompt", 503, "Service Unavailable", {}, io.BytesIO(b"no healthy upstream")
        )
        result = ComfyUIClient("http://backend").submit({})
        assert result.status == 503
        assert result.body == "no healthy upstream"
        assert not result.is_success

    @patch("comfyui_dispatcher.client.urllib.request.urlopen")
    def test_connection_refused(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError(ConnectionRefusedError(111, "Connection refused"))
        with pytest.raises(NetworkError) as exc_info:
            ComfyUIClient("http://backend").submit({})
        assert exc_info.value.details["url"] == "http://backend/prompt"

    @patch("comfyui_dispatcher.client.urllib.request.urlopen")
    def test_timeout(self, mock_urlopen):
        mock_urlopen.side_effect = socket.timeout("timed out")
        with pytest.raises(NetworkError, match="failed"):
            ComfyUIClient("http://backend", timeout=1).submit({})
