"""Transports deliver a WireRequest and hand back the raw provider response."""

import json
import socket
import urllib.error
import urllib.parse
import urllib.request

from .config import ProviderConfig
from .errors import AgentError, TransportError
from .providers import WireRequest

# Cap on how much of an error body is echoed back to the user.
ERROR_BODY_CHARS = 2000


class Transport:
    def send(self, request: WireRequest):
        raise NotImplementedError


class HttpTransport(Transport):
    """POST the request body as JSON with urllib; return the response text."""

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout

    def send(self, request: WireRequest) -> str:
        url = request.url
        if request.params:
            url = f"{url}?{urllib.parse.urlencode(request.params)}"
        payload = json.dumps(request.body).encode()
        req = urllib.request.Request(
            url, data=payload, headers=request.headers, method="POST"
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = ""
            raise TransportError(f"API error: {e.code} - {body[:ERROR_BODY_CHARS]}")
        except urllib.error.URLError as e:
            raise TransportError(f"could not reach {request.url}: {e.reason}")
        except (socket.timeout, TimeoutError):
            raise TransportError(
                f"request to {request.url} timed out after {self.timeout:g}s"
            )
        except OSError as e:
            raise TransportError(f"request to {request.url} failed: {e}")


class LiteLLMTransport(Transport):
    """Hand the request to litellm.completion(); return the response as a dict."""

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout

    def send(self, request: WireRequest) -> dict:
        import litellm

        litellm.suppress_debug_info = True

        kwargs = dict(request.body)
        kwargs.update(request.options)
        kwargs["timeout"] = self.timeout
        try:
            response = litellm.completion(**kwargs)
        except litellm.ContextWindowExceededError as e:
            raise TransportError(f"context window exceeded: {e}")
        except litellm.AuthenticationError as e:
            raise TransportError(f"authentication failed: {e}")
        except Exception as e:
            raise TransportError(f"LLM call failed: {e}")

        if isinstance(response, dict):
            return response
        try:
            return response.model_dump()
        except AttributeError:
            raise TransportError(
                f"unexpected response type from litellm: {type(response).__name__}"
            )


def transport_for(config: ProviderConfig) -> Transport:
    if config.api == "litellm":
        return LiteLLMTransport(timeout=config.request_timeout)
    if config.api in ("openai", "gemini"):
        return HttpTransport(timeout=config.request_timeout)
    raise AgentError(f"no transport for api {config.api!r}")
