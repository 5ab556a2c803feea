"""Data model for requested image schematics."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

import yaml

SCHEMATIC_ID_EXTENSION_NAME = "schematic"
"""Name of the extension carrying schematic ID information in generated images."""

_INDENT = 4


class InvalidSchematicError(ValueError):
    """Raised when a schematic cannot be decoded."""


@dataclass
class MetaValue:
    """Initial META contents for the image."""

    key: int = 0
    value: str = ""


@dataclass
class SystemExtensions:
    """System extensions to be installed."""

    official_extensions: list[str] = field(default_factory=list)


@dataclass
class Customization:
    """Talos image customization."""

    extra_kernel_args: list[str] = field(default_factory=list)
    meta: list[MetaValue] = field(default_factory=list)
    system_extensions: SystemExtensions = field(default_factory=SystemExtensions)


@dataclass
class Overlay:
    """Overlay options for image generation."""

    image: str = ""
    name: str = ""
    options: dict[str, Any] = field(default_factory=dict)

    def is_zero(self) -> bool:
        return not self.image and not self.name and not self.options


@dataclass
class Schematic:
    """Requested image customization."""

    overlay: Overlay = field(default_factory=Overlay)
    customization: Customization = field(default_factory=Customization)

    def _to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if not self.overlay.is_zero():
            overlay: dict[str, Any] = {"image": self.overlay.image, "name": self.overlay.name}
            if self.overlay.options:
                overlay["options"] = self.overlay.options
            doc["overlay"] = overlay
        cust: dict[str, Any] = {}
        c = self.customization
        if c.extra_kernel_args:
            cust["extraKernelArgs"] = list(c.extra_kernel_args)
        if c.meta:
            cust["meta"] = [{"key": m.key, "value": m.value} for m in c.meta]
        if c.system_extensions.official_extensions:
            cust["systemExtensions"] = {
                "officialExtensions": list(c.system_extensions.official_extensions)
            }
        doc["customization"] = cust
        return doc

    def marshal(self) -> bytes:
        """Return the canonical YAML representation."""
        lines = _emit_mapping(self._to_document(), 0)
        return ("\n".join(lines) + "\n").encode()

    def id(self) -> str:
        """Return the stable sha256 identifier of the schematic."""
        return hashlib.sha256(self.marshal()).hexdigest()


def _scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = yaml.safe_dump(str(value), width=float("inf"), allow_unicode=True)
    if text.endswith("\n...\n"):
        text = text[: -len("\n...\n")]
    return text.rstrip("\n")


def _emit_value(prefix: str, value: Any, indent: int) -> list[str]:
    if isinstance(value, dict):
        if not value:
            return [f"{prefix} {{}}"]
        return [prefix] + _emit_mapping(value, indent + _INDENT)
    if isinstance(value, (list, tuple)):
        if not value:
            return [f"{prefix} []"]
        return [prefix] + _emit_sequence(value, indent + _INDENT)
    return [f"{prefix} {_scalar(value)}"]


def _emit_mapping(mapping: dict[str, Any], indent: int) -> list[str]:
    pad = " " * indent
    if not mapping:
        return [pad + "{}"]
    lines: list[str] = []
    for key, value in mapping.items():
        lines.extend(_emit_value(f"{pad}{_scalar(key)}:", value, indent))
    return lines


def _emit_sequence(items: Any, indent: int) -> list[str]:
    pad = " " * indent
    lines: list[str] = []
    for item in items:
        if isinstance(item, dict) and item:
            inner = _emit_mapping(item, indent + 2)
        elif isinstance(item, (list, tuple)) and item:
            inner = _emit_sequence(item, indent + 2)
        else:
            lines.extend(_emit_value(f"{pad}-", item, indent))
            continue
        inner[0] = pad + "- " + inner[0][indent + 2:]
        lines.extend(inner)
    return lines


def _check_fields(data: Any, allowed: set[str], type_name: str) -> dict[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidSchematicError(f"cannot unmarshal {data!r} into {type_name}")
    for key in data:
        if key not in allowed:
            raise InvalidSchematicError(f"field {key} not found in type {type_name}")
    return data


def _str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidSchematicError(f"{name} must be a list of strings")
    return list(value)


def _sorted_options(options: dict[str, Any]) -> dict[str, Any]:
    return {
        k: _sorted_options(v) if isinstance(v, dict) else v
        for k, v in sorted(options.items(), key=lambda kv: str(kv[0]))
    }


def unmarshal(data: bytes | str) -> Schematic:
    """Decode a schematic from its text representation."""
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise InvalidSchematicError(str(exc)) from exc
    if doc is None:
        raise InvalidSchematicError("EOF")

    top = _check_fields(doc, {"overlay", "customization"}, "schematic.Schematic")
    ov = _check_fields(top.get("overlay"), {"image", "name", "options"}, "schematic.Overlay")
    cu = _check_fields(
        top.get("customization"),
        {"extraKernelArgs", "meta", "systemExtensions"},
        "schematic.Customization",
    )
    se = _check_fields(
        cu.get("systemExtensions"), {"officialExtensions"}, "schematic.SystemExtensions"
    )

    meta: list[MetaValue] = []
    for item in cu.get("meta") or []:
        mv = _check_fields(item, {"key", "value"}, "schematic.MetaValue")
        key = mv.get("key", 0)
        if isinstance(key, bool) or not isinstance(key, int) or not 0 <= key <= 255:
            raise InvalidSchematicError(f"cannot unmarshal {key!r} into uint8")
        value = mv.get("value", "")
        meta.append(MetaValue(key=key, value="" if value is None else str(value)))

    options = ov.get("options") or {}
    if not isinstance(options, dict):
        raise InvalidSchematicError("overlay options must be a mapping")

    return Schematic(
        overlay=Overlay(
            image=str(ov.get("image") or ""),
            name=str(ov.get("name") or ""),
            options=_sorted_options(options),
        ),
        customization=Customization(
            extra_kernel_args=_str_list(cu.get("extraKernelArgs"), "extraKernelArgs"),
            meta=meta,
            system_extensions=SystemExtensions(
                official_extensions=_str_list(se.get("officialExtensions"), "officialExtensions")
            ),
        ),
    )