"""HTTP helpers shared by the discovery, token and key set requests."""

import json

import aiohttp

from .exceptions import HTTPClientError


def client_timeout(timeout: float) -> aiohttp.ClientTimeout:
    """Returns the per-request timeout for the configured number of seconds."""
    return aiohttp.ClientTimeout(total=timeout)


def http_raise_for_status(response: aiohttp.ClientResponse, body: str) -> None:
    """Raises an exception if the response status is not 200.

    The body must already have been read in full, partial responses are never
    looked at.
    """
    if response.status != 200:
        raise HTTPClientError(
            response.request_info,
            response.history,
            status=response.status,
            message=response.reason or "",
            headers=response.headers,
            body=body,
        )


def decode_json_object(body: str) -> dict:
    """Decodes a response body that must hold a JSON object."""
    document = json.loads(body)
    if not isinstance(document, dict):
        raise ValueError("Expected a JSON object")
    return document
