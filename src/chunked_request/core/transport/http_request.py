"""Translation of a request spec into an ``httpx.Request``."""

from __future__ import annotations

from typing import Any

import httpx

from chunked_request.core.domain.request_spec import CredentialsMode

_CREDENTIAL_HEADERS = ("Cookie", "Authorization")


def _is_same_origin(client: httpx.AsyncClient, url: httpx.URL) -> bool:
    base = client.base_url
    if not base.host:
        return False
    return (base.scheme, base.host, base.port) == (url.scheme, url.host, url.port)


def _encode_body(body: bytes | str | None) -> bytes | None:
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


def prepare_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: bytes | str | None = None,
    credentials: CredentialsMode | None = None,
) -> tuple[httpx.Request, dict[str, Any]]:
    """Build the request and the keyword arguments for ``client.send``.

    ``credentials`` follows the fetch semantics: ``omit`` never sends cookies
    or client authentication, ``same-origin`` only sends them to the client's
    ``base_url`` origin, ``include`` (and ``None``) leaves httpx defaults alone.
    """
    request = client.build_request(
        method, url, headers=headers or None, content=_encode_body(body)
    )
    send_kwargs: dict[str, Any] = {}

    strip = credentials == "omit" or (
        credentials == "same-origin" and not _is_same_origin(client, request.url)
    )
    if strip:
        explicit = {name.lower() for name in (headers or {})}
        for name in _CREDENTIAL_HEADERS:
            if name.lower() not in explicit:
                request.headers.pop(name, None)
        send_kwargs["auth"] = None

    return request, send_kwargs
