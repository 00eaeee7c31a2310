"""
Pytest fixtures and utilities for dispatcher tests
"""

import json
import logging
import sys
import threading
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from comfyui_dispatcher.client import RawResponse
from comfyui_dispatcher.mcp_utils import JSONFormatter, LOGGER_NAME
from comfyui_dispatcher.types import GenerationRequest

PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"


@pytest.fixture
def backend_env():
    """Every model's base URL, with assorted trailing slashes."""
    return {
        "Wai_SDXL_V150_URL": "http://wai.local:8188",
        "Qwen_Image_Edit_URL": "http://qwen-edit.local:8188/",
        "Flux_Krea_URL": "http://krea.local:8188",
        "Kontext_fp8_URL": "http://kontext.local:8188//",
        "Flux_Dev_URL": "http://flux-dev.local:8188/",
        "Stable_Diffusion_3_5_URL": "http://sd35.local:8188",
        "HiDream_Fp8_URL": "http://hidream.local:8188",
        "Qwen_Image_URL": "http://qwen.local:8188",
        "Z_Image_Turbo_URL": "http://zimage.local:8188",
        "Flux_2_URL": "http://flux2.local:8188",
        "WAN_I2V_URL": "http://wan.local:8188",
        "Supir_Repair_URL": "http://supir.local:8188",
    }


class FakeClient:
    """Stands in for ComfyUIClient; records submissions and replays one answer."""

    def __init__(self, base_url, timeout=None, response=None, error=None, calls=None):
        self.base_url = base_url
        self.timeout = timeout
        self._response = response
        self._error = error
        self.calls = calls if calls is not None else []

    @property
    def submit_url(self):
        return f"{self.base_url}/prompt"

    def submit(self, workflow):
        self.calls.append({"url": self.submit_url, "workflow": workflow})
        if self._error is not None:
            raise self._error
        return self._response


@pytest.fixture
def fake_backend():
    """
    Factory for a client_factory that answers every submit with one response.

    Usage:
        backend = fake_backend(RawResponse(200, '{"images": ["abc"]}'))
        Dispatcher(client_factory=backend, env=...)
        backend.calls  # [{"url": ..., "workflow": {...}}]
    """

    def _make(response=None, error=None):
        calls = []
        lock = threading.Lock()

        def factory(base_url, timeout=None):
            return FakeClient(base_url, timeout, response, error, _LockedList(calls, lock))

        factory.calls = calls
        return factory

    return _make


class _LockedList:
    def __init__(self, items, lock):
        self._items = items
        self._lock = lock

    def append(self, item):
        with self._lock:
            self._items.append(item)


@pytest.fixture
def ok_response():
    """A 200 answer carrying one image."""
    return RawResponse(200, json.dumps({"images": [PNG_B64]}))


@pytest.fixture
def make_request():
    """Factory for GenerationRequest with sensible defaults."""

    def _make(model_id="Flux-Dev", **overrides):
        params = {
            "prompt": "a lighthouse at dusk",
            "model_id": model_id,
            "width": 768,
            "height": 512,
            "steps": 12,
        }
        params.update(overrides)
        return GenerationRequest(**params)

    return _make


# =============================================================================
# Structured Logging Fixtures
# =============================================================================


class CapturingLogHandler(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def get_json_logs(self):
        """Return list of parsed JSON log entries."""
        formatter = JSONFormatter()
        return [json.loads(formatter.format(record)) for record in self.records]

    def messages(self):
        return [record.getMessage() for record in self.records]

    def clear(self):
        self.records = []


@pytest.fixture
def capturing_logger():
    """Fixture providing a capturing log handler."""
    logger = logging.getLogger(LOGGER_NAME)

    handler = CapturingLogHandler()
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)

    original_level = logger.level
    logger.setLevel(logging.DEBUG)

    yield handler

    logger.removeHandler(handler)
    logger.setLevel(original_level)
    handler.clear()


@pytest.fixture
def correlation_context():
    """Fixture providing correlation ID context management."""
    from comfyui_dispatcher.mcp_utils import clear_correlation_id, set_correlation_id

    def _set_cid(cid):
        set_correlation_id(cid)
        return cid

    yield _set_cid

    clear_correlation_id()
