"""
ComfyUI Backend Client

Low-level HTTP client that submits one workflow and hands back the raw
status and body. Interpretation of the response lives in ``dispatcher``.

Each submit is a single attempt; callers decide whether to resubmit.
"""

import json
import os
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional

from .errors import NetworkError
from .schemas import PromptSubmission, Workflow

SUBMIT_PATH = os.environ.get("COMFYUI_SUBMIT_PATH", "/prompt")


def _default_timeout() -> Optional[float]:
    value = os.environ.get("COMFYUI_DISPATCH_TIMEOUT", "").strip()
    return float(value) if value else None


@dataclass
class RawResponse:
    """Status code and undecoded body text of one backend answer."""

    status: int
    body: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


class ComfyUIClient:
    """HTTP client for one ComfyUI backend."""

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.base_url = base_url
        self.timeout = _default_timeout() if timeout is None else timeout

    @property
    def submit_url(self) -> str:
        return f"{self.base_url}{SUBMIT_PATH}"

    def submit(self, workflow: Workflow) -> RawResponse:
        """
        POST ``{"prompt": workflow}`` to the submit path.

        Non-2xx statuses come back as a RawResponse, not an exception.

        Raises:
            NetworkError: DNS failure, refused connection, timeout.
        """
        req = urllib.request.Request(self.submit_url, method="POST")
        submission: PromptSubmission = {"prompt": workflow}
        req.data = json.dumps(submission).encode()
        req.add_header("Content-Type", "application/json")

        kwargs = {} if self.timeout is None else {"timeout": self.timeout}
        try:
            with urllib.request.urlopen(req, **kwargs) as resp:
                return RawResponse(resp.status, resp.read().decode("utf-8", errors="replace"))
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp is not None else ""
            return RawResponse(e.code, body)
        except urllib.error.URLError as e:
            raise NetworkError(
                f"Cannot reach backend at {self.base_url}: {e.reason}",
                {"url": self.submit_url},
            ) from e
        except (socket.timeout, TimeoutError, ConnectionError) as e:
            raise NetworkError(
                f"Connection to {self.base_url} failed: {e}",
                {"url": self.submit_url, "timeout": self.timeout},
            ) from e
