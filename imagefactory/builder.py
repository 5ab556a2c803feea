"""Building imager profiles from download paths and schematics."""

from __future__ import annotations

import abc
import copy
import json
import platform
import re
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum

from .profile import (
    DEFAULT_RAW_DISK_SIZE,
    MIN_RAW_DISK_SIZE,
    ContainerAsset,
    DiskFormat,
    ImageOptions,
    OutFormat,
    OutKind,
    OverlayOptions,
    Profile,
)
from .schematic import MetaValue, Schematic
from .secureboot import SecureBootDisabledError, Service

PLATFORM_METAL = "metal"
INSTALLER_IMAGE = "siderolabs/installer"

_MIN_OVERLAY_VERSION = (1, 7, 0)
_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$")

# disk defaults taken from the default profile of each platform
_DISK_DEFAULTS: dict[str, tuple[int, str]] = {
    PLATFORM_METAL: (MIN_RAW_DISK_SIZE, ""),
    "azure": (0, "subformat=fixed,force_size"),
}

_OUT_FORMATS = (OutFormat.TAR, OutFormat.GZ, OutFormat.XZ, OutFormat.ZSTD)
_DISK_FORMAT_SUFFIXES = (
    (DiskFormat.RAW, "raw"),
    (DiskFormat.QCOW2, "qcow2"),
    (DiskFormat.VPC, "vhd"),
    (DiskFormat.OVA, "ova"),
)

_EXTENSION_ALIASES = {
    "siderolabs/v4l-uvc": "siderolabs/v4l-uvc-drivers",
    "siderolabs/usb-modem": "siderolabs/usb-modem-drivers",
    "siderolabs/gasket": "siderolabs/gasket-driver",
    "siderolabs/talos-vmtoolsd": "siderolabs/vmtoolsd-guest-agent",
    "siderolabs/xe-guest-utilities": "siderolabs/xen-guest-agent",
}

_MACHINE_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

_extension_hits: Counter[str] = Counter()
_hits_lock = threading.Lock()


class InvalidProfileError(ValueError):
    """Raised when a requested profile is invalid."""


class Arch(str, Enum):
    """Supported architectures."""

    AMD64 = "amd64"
    ARM64 = "arm64"

    def __str__(self) -> str:
        return self.value


def _repository_of(reference: str) -> str:
    ref = reference.split("@", 1)[0]
    slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > slash:
        ref = ref[:colon]
    first, sep, rest = ref.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return rest
    if not sep:
        return "library/" + ref
    return ref


@dataclass
class ExtensionRef:
    """Reference to an official system extension image."""

    tagged_reference: str = ""
    digest: str = ""

    @property
    def repository(self) -> str:
        """Repository path without the registry and tag."""
        return _repository_of(self.tagged_reference)

    def is_zero(self) -> bool:
        return not self.tagged_reference and not self.digest


@dataclass
class OverlayRef:
    """Reference to an official overlay image."""

    name: str = ""
    tagged_reference: str = ""
    digest: str = ""

    def is_zero(self) -> bool:
        return not self.name and not self.tagged_reference and not self.digest


class ArtifactProducer(abc.ABC):
    """Produces extensions, overlays and installer images for builds."""

    @abc.abstractmethod
    def get_schematic_extension(self, version_tag: str, schematic: Schematic) -> str:
        """Return the path of the schematic extension tarball."""

    @abc.abstractmethod
    def get_official_extensions(self, version_tag: str) -> list[ExtensionRef]:
        """Return the official extensions available for a version."""

    @abc.abstractmethod
    def get_official_overlays(self, version_tag: str) -> list[OverlayRef]:
        """Return the official overlays available for a version."""

    @abc.abstractmethod
    def get_extension_image(self, arch: Arch, ref: ExtensionRef) -> str:
        """Return the path of the extension image."""

    @abc.abstractmethod
    def get_overlay_image(self, arch: Arch, ref: OverlayRef) -> str:
        """Return the path of the overlay image."""

    @abc.abstractmethod
    def get_installer_image(self, arch: Arch, version_tag: str) -> str:
        """Return the path of the base installer image."""


def supports_overlay(version: str) -> bool:
    """Whether the Talos version supports overlays; unknown versions are treated as latest."""
    match = _VERSION_RE.match(version.strip())
    if match is None:
        return True
    numbers = tuple(int(g) if g else 0 for g in match.group(1, 2, 3))
    if numbers != _MIN_OVERLAY_VERSION:
        return numbers > _MIN_OVERLAY_VERSION
    return match.group(4) is None


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _parse_arch(value: str, prof: Profile) -> None:
    if value not in {a.value for a in Arch}:
        raise InvalidProfileError(f"invalid architecture: {_quote(value)}")
    prof.arch = value


def _parse_platform_arch(value: str, version: str, prof: Profile) -> None:
    if value.endswith("-secureboot"):
        value = value[: -len("-secureboot")]
        prof.secure_boot = True

    plat, sep, rest = value.partition("-")
    if not sep:
        raise InvalidProfileError(f"invalid platform-arch: {_quote(value)}")

    # 'digital-ocean' carries a dash in the platform name
    if plat == "digital" and rest.startswith("ocean-"):
        plat = "digital-ocean"
        rest = rest[len("ocean-"):]

    prof.platform = plat

    if (
        plat == PLATFORM_METAL
        and rest.endswith("-" + Arch.ARM64.value)
        and not supports_overlay(version)
    ):
        # arm64 metal images might be "board" images
        prof.board, _, rest = rest.partition("-")

    _parse_arch(rest, prof)


def _raw_profile(kind: OutKind) -> Profile:
    prof = Profile()
    prof.output.kind = kind
    prof.output.out_format = OutFormat.RAW
    return prof


def parse_from_path(path: str, version: str) -> Profile:
    """Parse an imager profile from an asset file path."""
    if path.startswith("kernel-"):
        prof = _raw_profile(OutKind.KERNEL)
        prof.platform = PLATFORM_METAL
        _parse_arch(path[len("kernel-"):], prof)
        return prof

    if path.startswith("cmdline-"):
        prof = _raw_profile(OutKind.CMDLINE)
        _parse_platform_arch(path[len("cmdline-"):], version, prof)
        return prof

    if path.startswith("initramfs-") and path.endswith(".xz"):
        prof = _raw_profile(OutKind.INITRAMFS)
        prof.platform = PLATFORM_METAL
        _parse_arch(path[len("initramfs-"): -len(".xz")], prof)
        return prof

    if path.endswith(".iso"):
        prof = _raw_profile(OutKind.ISO)
        _parse_platform_arch(path[: -len(".iso")], version, prof)
        return prof

    if path.endswith("-uki.efi"):
        prof = _raw_profile(OutKind.UKI)
        _parse_platform_arch(path[: -len("-uki.efi")], version, prof)
        return prof

    if path.startswith("installer-") and path.endswith(".tar"):
        prof = _raw_profile(OutKind.INSTALLER)
        prof.platform = PLATFORM_METAL
        rest = path[len("installer-"): -len(".tar")]
        if rest.endswith("-secureboot"):
            rest = rest[: -len("-secureboot")]
            prof.secure_boot = True
        _parse_arch(rest, prof)
        return prof

    # anything else is a disk image: cut the suffixes from the end
    prof = _raw_profile(OutKind.IMAGE)
    options = ImageOptions(disk_size=DEFAULT_RAW_DISK_SIZE)
    prof.output.image_options = options

    for out_format in _OUT_FORMATS:
        if path.endswith(out_format.value):
            path = path[: -len(out_format.value)]
            prof.output.out_format = out_format
            break

    for disk_format, suffix in _DISK_FORMAT_SUFFIXES:
        if path.endswith("." + suffix):
            path = path[: -len(suffix) - 1]
            options.disk_format = disk_format
            break

    if options.disk_format is DiskFormat.UNKNOWN:
        raise InvalidProfileError(f"invalid profile path: {_quote(path)}")

    _parse_platform_arch(path, version, prof)

    defaults = _DISK_DEFAULTS.get(prof.platform)
    if defaults is not None:
        disk_size, format_options = defaults
        if disk_size:
            options.disk_size = disk_size
        if format_options:
            options.disk_format_options = format_options

    return prof


def installer_profile(secureboot: bool, arch: Arch) -> Profile:
    """Return the profile for an installer image."""
    prof = _raw_profile(OutKind.INSTALLER)
    prof.arch = Arch(arch).value
    prof.platform = PLATFORM_METAL
    if secureboot:
        prof.secure_boot = True
    return prof


def _find_extension(available: list[ExtensionRef], name: str) -> ExtensionRef | None:
    return next((ext for ext in available if ext.repository == name), None)


def _native_arch() -> Arch:
    machine = platform.machine().lower()
    return Arch(_MACHINE_ARCH.get(machine, machine))


def _record_hit(name: str) -> None:
    with _hits_lock:
        _extension_hits[name] += 1


def enhance_from_schematic(
    prof: Profile,
    schematic: Schematic,
    producer: ArtifactProducer,
    secure_boot_service: Service,
    version_tag: str,
) -> Profile:
    """Return a copy of the profile completed with the schematic's customizations."""
    prof = copy.deepcopy(prof)

    if prof.secure_boot_enabled():
        try:
            prof.input.secure_boot = secure_boot_service.secure_boot_assets()
        except SecureBootDisabledError as exc:
            raise InvalidProfileError(str(exc)) from exc

    overlay_name = schematic.overlay.name
    if overlay_name and not supports_overlay(version_tag):
        raise InvalidProfileError(f"overlay is not supported for Talos version {version_tag}")

    kind = prof.output.kind

    if kind is OutKind.INSTALLER:
        try:
            installer_path = producer.get_installer_image(Arch(prof.arch), version_tag)
        except Exception as exc:
            raise RuntimeError(f"failed to get base installer: {exc}") from exc
        prof.input.base_installer.image_ref = f"{INSTALLER_IMAGE}:{version_tag}"  # fake reference
        prof.input.base_installer.oci_path = installer_path

    if kind not in (OutKind.CMDLINE, OutKind.KERNEL):
        official = schematic.customization.system_extensions.official_extensions
        if official:
            try:
                available = producer.get_official_extensions(version_tag)
            except Exception as exc:
                raise RuntimeError(f"error getting official extensions: {exc}") from exc

            for name in official:
                ref = _find_extension(available, name)
                if ref is None and name in _EXTENSION_ALIASES:
                    ref = _find_extension(available, _EXTENSION_ALIASES[name])
                if ref is None:
                    raise InvalidProfileError(
                        f"official extension {_quote(name)} is not available "
                        f"for Talos version {version_tag}"
                    )
                try:
                    image_path = producer.get_extension_image(Arch(prof.arch), ref)
                except Exception as exc:
                    raise RuntimeError(
                        f"error getting extension image {ref.tagged_reference}: {exc}"
                    ) from exc
                _record_hit(name)
                prof.input.system_extensions.append(ContainerAsset(oci_path=image_path))

        schematic_path = producer.get_schematic_extension(version_tag, schematic)
        prof.input.system_extensions.append(ContainerAsset(tarball_path=schematic_path))

        if overlay_name:
            try:
                overlays = producer.get_official_overlays(version_tag)
            except Exception as exc:
                raise RuntimeError(f"error getting official overlays: {exc}") from exc

            overlay_ref = next((o for o in overlays if o.name == overlay_name), None)
            if overlay_ref is None:
                raise InvalidProfileError(
                    f"official overlay {_quote(overlay_name)} is not available "
                    f"for Talos version {version_tag}"
                )
            try:
                native_path = producer.get_overlay_image(_native_arch(), overlay_ref)
                target_path = producer.get_overlay_image(Arch(prof.arch), overlay_ref)
            except Exception as exc:
                raise RuntimeError(
                    f"error getting extension image {overlay_ref.tagged_reference}: {exc}"
                ) from exc

            _record_hit(overlay_name)

            prof.overlay = OverlayOptions(
                name=overlay_name,
                image=ContainerAsset(oci_path=native_path),
                extra_options=copy.deepcopy(schematic.overlay.options),
            )
            prof.input.overlay_installer = ContainerAsset(oci_path=target_path)

    # initramfs/kernel and non-UKI installers can't carry kernel args & META;
    # UKI installers carry kernel args embedded in the UKI
    skip = kind in (OutKind.INITRAMFS, OutKind.KERNEL) or (
        kind is OutKind.INSTALLER and not prof.secure_boot_enabled()
    )
    if not skip:
        prof.customization.extra_kernel_args.extend(schematic.customization.extra_kernel_args)
        if kind is not OutKind.INSTALLER:
            prof.customization.meta_contents.extend(
                MetaValue(key=m.key, value=m.value) for m in schematic.customization.meta
            )

    prof.version = version_tag
    return prof