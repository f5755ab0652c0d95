from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml


class TemplateError(Exception):
    """Raised when the resource template cannot be read or parsed."""


def load_template(path: str | Path) -> dict[str, Any]:
    """Read the first YAML document at ``path`` as a resource template."""
    template_path = Path(path)
    try:
        raw = template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"failed to read template {template_path}") from exc

    try:
        documents = [doc for doc in yaml.safe_load_all(raw) if doc is not None]
    except yaml.YAMLError as exc:
        raise TemplateError(f"failed to parse template {template_path}") from exc

    if not documents:
        raise TemplateError(f"template {template_path} is empty")

    template = documents[0]
    if not isinstance(template, dict):
        raise TemplateError(f"template {template_path} is not a mapping")
    for field in ("apiVersion", "kind"):
        if not template.get(field):
            raise TemplateError(f"template {template_path} has no {field}")
    return template


def object_name(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name") or ""


def object_namespace(obj: dict[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("namespace") or ""


def object_key(obj: dict[str, Any]) -> str:
    return f"{object_namespace(obj)}/{object_name(obj)}"


def instantiate_template(template: dict[str, Any], identity: str | int) -> dict[str, Any]:
    """Return a private copy of ``template`` named and namespaced for one worker.

    Templates without a name (access reviews and similar check-style objects)
    are copied unchanged and carry no namespace.
    """
    payload = copy.deepcopy(template)
    name = object_name(payload)
    if not name:
        return payload

    unique = f"{name}-{identity}"
    metadata = payload.setdefault("metadata", {})
    metadata["name"] = unique
    metadata["namespace"] = unique
    return payload


__all__ = [
    "TemplateError",
    "instantiate_template",
    "load_template",
    "object_key",
    "object_name",
    "object_namespace",
]
