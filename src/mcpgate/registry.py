"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

In-memory registries of static MCP resources and prompts.

Content may contain ``{{placeholder}}`` markers; placeholders become the
entry's ``parameters`` and are resolved with Jinja at read time.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from jinja2 import DebugUndefined, Environment, Template, TemplateError, meta

from .errors import InvalidParams, ResourceNotFound

logger = logging.getLogger("mcpgate.registry")

_jinja = Environment(undefined=DebugUndefined, autoescape=False, keep_trailing_newline=True)
_template_cache: dict[str, Template] = {}
_template_lock = threading.Lock()


def extract_parameters(content: str) -> list[str]:
    """Return sorted placeholder names; text that is not a valid template has none."""
    try:
        parsed = _jinja.parse(content)
    except TemplateError:
        return []
    return sorted(meta.find_undeclared_variables(parsed))


def render_content(content: str, arguments: dict[str, Any] | None) -> str:
    """
    Substitute provided arguments.

    A placeholder without a value is re-emitted in normalized form, so
    ``{{name}}`` comes back as ``{{ name }}``. Without arguments the content
    is returned untouched.
    """
    if not arguments:
        return content
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    with _template_lock:
        template = _template_cache.get(digest)
    if template is None:
        try:
            compiled = _jinja.from_string(content)
        except TemplateError as exc:
            raise InvalidParams(f"content is not a valid template: {exc}") from exc
        with _template_lock:
            template = _template_cache.setdefault(digest, compiled)
    try:
        return template.render(arguments)
    except TemplateError as exc:
        raise InvalidParams(f"failed to render template: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    """
    Readable MCP resource.

    Attributes:
        uri: Unique key.
        name: Display name.
        description: Human-readable description.
        mime_type: MIME type reported on list/read.
        content: Raw text, possibly containing placeholders.
        parameters: Placeholder names found in ``content``.
        source: ``"static"`` or ``"cached"``.
    """

    uri: str
    name: str
    description: str = ""
    mime_type: str = "text/plain"
    content: str = ""
    parameters: tuple[str, ...] = ()
    source: str = "static"

    @property
    def has_parameters(self) -> bool:
        return bool(self.parameters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "parameters": list(self.parameters),
            "hasParameters": self.has_parameters,
            "source": self.source,
        }

    def to_template_dict(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "uriTemplate": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "parameters": list(self.parameters),
            "parameterCount": len(self.parameters),
        }


@dataclass(frozen=True, slots=True)
class PromptDescriptor:
    """MCP prompt keyed by ``name``; arguments derive from template placeholders."""

    name: str
    description: str = ""
    content: str = ""
    parameters: tuple[str, ...] = ()
    source: str = "static"
    arguments: tuple[dict[str, Any], ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        arguments = list(self.arguments) or [
            {"name": param, "description": f"The {param} parameter", "required": False}
            for param in self.parameters
        ]
        return {
            "name": self.name,
            "description": self.description,
            "arguments": arguments,
            "source": self.source,
        }


def make_resource(
    uri: str,
    content: str,
    *,
    name: str | None = None,
    description: str = "",
    mime_type: str = "text/plain",
    source: str = "static",
) -> ResourceDescriptor:
    """Build a resource, deriving ``parameters`` from the content."""
    return ResourceDescriptor(
        uri=uri,
        name=name or uri,
        description=description,
        mime_type=mime_type,
        content=content,
        parameters=tuple(extract_parameters(content)),
        source=source,
    )


def make_prompt(
    name: str,
    content: str,
    *,
    description: str = "",
    source: str = "static",
) -> PromptDescriptor:
    """Build a prompt, deriving ``parameters`` from the content."""
    return PromptDescriptor(
        name=name,
        description=description,
        content=content,
        parameters=tuple(extract_parameters(content)),
        source=source,
    )


class ResourceStore:
    """Static resources keyed by URI; the first registration of a URI wins."""

    def __init__(self, resources: Iterable[ResourceDescriptor] = ()) -> None:
        self._lock = threading.RLock()
        self._resources: dict[str, ResourceDescriptor] = {}
        for resource in resources:
            self.add(resource)

    def add(self, resource: ResourceDescriptor) -> bool:
        with self._lock:
            if resource.uri in self._resources:
                logger.warning("Duplicate resource URI ignored: %s", resource.uri)
                return False
            self._resources[resource.uri] = replace(resource, source="static")
            return True

    def remove(self, uri: str) -> None:
        with self._lock:
            self._resources.pop(uri, None)

    def get(self, uri: str) -> ResourceDescriptor | None:
        with self._lock:
            return self._resources.get(uri)

    def list(self) -> list[ResourceDescriptor]:
        with self._lock:
            return list(self._resources.values())


class PromptStore:
    """Static prompts keyed by name; the first registration of a name wins."""

    def __init__(self, prompts: Iterable[PromptDescriptor] = ()) -> None:
        self._lock = threading.RLock()
        self._prompts: dict[str, PromptDescriptor] = {}
        for prompt in prompts:
            self.add(prompt)

    def add(self, prompt: PromptDescriptor) -> bool:
        with self._lock:
            if prompt.name in self._prompts:
                logger.warning("Duplicate prompt name ignored: %s", prompt.name)
                return False
            self._prompts[prompt.name] = replace(prompt, source="static")
            return True

    def remove(self, name: str) -> None:
        with self._lock:
            self._prompts.pop(name, None)

    def get(self, name: str) -> PromptDescriptor | None:
        with self._lock:
            return self._prompts.get(name)

    def list(self) -> list[PromptDescriptor]:
        with self._lock:
            return list(self._prompts.values())


def read_resource(
    resource: ResourceDescriptor | None,
    uri: str,
    arguments: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``resources/read`` result for one resource."""
    if resource is None:
        raise ResourceNotFound(f"Resource not found: {uri}")
    text = render_content(resource.content, arguments) if resource.has_parameters else resource.content
    result: dict[str, Any] = {
        "contents": [
            {
                "uri": resource.uri,
                "mimeType": resource.mime_type,
                "text": text,
            }
        ]
    }
    if resource.has_parameters:
        result["template"] = {
            "hasParameters": True,
            "parameters": list(resource.parameters),
            "parameterCount": len(resource.parameters),
        }
    return result


def get_prompt(
    prompt: PromptDescriptor | None,
    name: str,
    arguments: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the ``prompts/get`` result for one prompt."""
    if prompt is None:
        raise ResourceNotFound(f"Prompt not found: {name}")
    return {
        "description": prompt.description,
        "messages": [
            {
                "role": "user",
                "content": {"type": "text", "text": render_content(prompt.content, arguments)},
            }
        ],
    }
