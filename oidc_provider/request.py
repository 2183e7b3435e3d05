"""
Framework-neutral view of an incoming HTTP request, as seen by rules, grants and the bearer validator.
"""
import base64
import binascii
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request


@dataclass(frozen=True)
class ServerRequest:
    method: str = "GET"
    query_params: dict[str, str] = field(default_factory=dict)
    # Parsed form body; None when the request carried no form body
    body_params: dict[str, str] | None = None
    # Lower-cased header names
    headers: dict[str, str] = field(default_factory=dict)
    # Raw header list, kept for the bearer fallback recovery path
    raw_headers: list[tuple[str, str]] = field(default_factory=list)
    cookies: dict[str, str] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)

    def get_header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def get_attribute(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def with_attribute(self, name: str, value: Any) -> "ServerRequest":
        attributes = dict(self.attributes)
        attributes[name] = value
        return dataclasses.replace(self, attributes=attributes)

    def all_params_for_methods(
        self,
        allowed_methods: tuple[str, ...] | list[str],
        logger: logging.Logger | None = None,
    ) -> dict[str, str] | None:
        """Query params for GET, parsed body for POST; None if the method is not allowed."""
        method = self.method.upper()
        if method not in [m.upper() for m in allowed_methods]:
            if logger is not None:
                logger.warning(
                    "Request method not allowed: method=%s allowed=%s",
                    method,
                    ", ".join(allowed_methods),
                )
            return None
        if method == "GET":
            return self.query_params
        if method == "POST":
            return self.body_params or {}
        return None

    def param_for_methods(
        self,
        key: str,
        allowed_methods: tuple[str, ...] | list[str],
        logger: logging.Logger | None = None,
        default: str | None = None,
    ) -> str | None:
        params = self.all_params_for_methods(allowed_methods, logger)
        if params is None:
            return default
        return params.get(key, default)

    def basic_auth_credentials(self) -> tuple[str, str] | None:
        """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
        header_value = self.get_header("authorization")
        if not header_value or not header_value.strip().lower().startswith("basic "):
            return None
        try:
            decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
        if ":" not in decoded:
            return None
        client_id, _, client_secret = decoded.partition(":")
        return client_id, client_secret


_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def get_server_request(request: Request) -> ServerRequest:
    """Dependency: read the form body (if any) and snapshot the request for the synchronous core."""
    body_params = None
    content_type = request.headers.get("content-type", "")
    if request.method.upper() == "POST" and content_type.startswith(_FORM_CONTENT_TYPES):
        form = await request.form()
        body_params = {key: value for key, value in form.items() if isinstance(value, str)}
    return ServerRequest(
        method=request.method,
        query_params=dict(request.query_params),
        body_params=body_params,
        headers={key.lower(): value for key, value in request.headers.items()},
        raw_headers=[(key.decode("latin-1").lower(), value.decode("latin-1")) for key, value in request.headers.raw],
        cookies=dict(request.cookies),
    )
