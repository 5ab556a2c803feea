"""Image build profiles, cleaning and hashing for asset caching."""

from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import yaml

from .schematic import MetaValue
from .secureboot import SecureBootAssets

MIB = 1024 * 1024
MIN_RAW_DISK_SIZE = 1246 * MIB
DEFAULT_RAW_DISK_SIZE = 8192 * MIB


class OutKind(str, Enum):
    """Kind of the produced asset."""

    UNKNOWN = "unknown"
    ISO = "iso"
    IMAGE = "image"
    INSTALLER = "installer"
    KERNEL = "kernel"
    INITRAMFS = "initramfs"
    UKI = "uki"
    CMDLINE = "cmdline"

    def __str__(self) -> str:
        return self.value


class OutFormat(str, Enum):
    """Output compression format; the value is the file suffix where there is one."""

    UNKNOWN = "unknown"
    RAW = "raw"
    XZ = ".xz"
    GZ = ".gz"
    TAR = ".tar.gz"
    ZSTD = ".zst"

    def __str__(self) -> str:
        return self.value


class DiskFormat(str, Enum):
    """Disk image format."""

    UNKNOWN = "unknown"
    RAW = "raw"
    QCOW2 = "qcow2"
    VPC = "vpc"
    OVA = "ova"

    def __str__(self) -> str:
        return self.value


@dataclass
class FileAsset:
    path: str = ""


@dataclass
class ContainerAsset:
    image_ref: str = ""
    force_insecure: bool = False
    tarball_path: str = ""
    oci_path: str = ""

    def _to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if self.image_ref:
            doc["imageRef"] = self.image_ref
        if self.force_insecure:
            doc["forceInsecure"] = True
        if self.tarball_path:
            doc["tarballPath"] = self.tarball_path
        if self.oci_path:
            doc["ociPath"] = self.oci_path
        return doc


@dataclass
class ImageOptions:
    disk_size: int = 0
    disk_format: DiskFormat = DiskFormat.UNKNOWN
    disk_format_options: str = ""


@dataclass
class Output:
    kind: OutKind = OutKind.UNKNOWN
    image_options: ImageOptions | None = None
    out_format: OutFormat = OutFormat.UNKNOWN


@dataclass
class OverlayOptions:
    name: str = ""
    image: ContainerAsset = field(default_factory=ContainerAsset)
    extra_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Input:
    kernel: FileAsset = field(default_factory=FileAsset)
    initramfs: FileAsset = field(default_factory=FileAsset)
    sd_stub: FileAsset = field(default_factory=FileAsset)
    sd_boot: FileAsset = field(default_factory=FileAsset)
    base_installer: ContainerAsset = field(default_factory=ContainerAsset)
    overlay_installer: ContainerAsset = field(default_factory=ContainerAsset)
    secure_boot: SecureBootAssets | None = None
    system_extensions: list[ContainerAsset] = field(default_factory=list)


@dataclass
class CustomizationProfile:
    extra_kernel_args: list[str] = field(default_factory=list)
    meta_contents: list[MetaValue] = field(default_factory=list)


@dataclass
class Profile:
    """Describes an asset to be built."""

    arch: str = ""
    platform: str = ""
    board: str = ""
    secure_boot: bool | None = None
    version: str = ""
    customization: CustomizationProfile = field(default_factory=CustomizationProfile)
    input: Input = field(default_factory=Input)
    output: Output = field(default_factory=Output)
    overlay: OverlayOptions | None = None

    def secure_boot_enabled(self) -> bool:
        return bool(self.secure_boot)

    def _to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"arch": self.arch, "platform": self.platform}
        if self.board:
            doc["board"] = self.board
        doc["secureboot"] = self.secure_boot
        doc["version"] = self.version

        cust: dict[str, Any] = {}
        if self.customization.extra_kernel_args:
            cust["extraKernelArgs"] = list(self.customization.extra_kernel_args)
        if self.customization.meta_contents:
            cust["metaContents"] = [
                {"key": m.key, "value": m.value} for m in self.customization.meta_contents
            ]
        if cust:
            doc["customization"] = cust

        inp = self.input
        input_doc: dict[str, Any] = {
            "kernel": {"path": inp.kernel.path},
            "initramfs": {"path": inp.initramfs.path},
        }
        if inp.sd_stub.path:
            input_doc["sdStub"] = {"path": inp.sd_stub.path}
        if inp.sd_boot.path:
            input_doc["sdBoot"] = {"path": inp.sd_boot.path}
        input_doc["baseInstaller"] = inp.base_installer._to_document()
        overlay_installer = inp.overlay_installer._to_document()
        if overlay_installer:
            input_doc["overlayInstaller"] = overlay_installer
        if inp.secure_boot is not None:
            sb = inp.secure_boot
            input_doc["secureboot"] = {
                "secureboot": {
                    "keyPath": sb.secure_boot_signer.key_path,
                    "certPath": sb.secure_boot_signer.cert_path,
                    "azureVaultURL": sb.secure_boot_signer.azure_vault_url,
                    "azureCertificateID": sb.secure_boot_signer.azure_certificate_id,
                },
                "pcr": {
                    "keyPath": sb.pcr_signer.key_path,
                    "azureVaultURL": sb.pcr_signer.azure_vault_url,
                    "azureKeyID": sb.pcr_signer.azure_key_id,
                },
            }
        if inp.system_extensions:
            input_doc["systemExtensions"] = [a._to_document() for a in inp.system_extensions]
        doc["input"] = input_doc

        out = self.output
        output_doc: dict[str, Any] = {"kind": out.kind.value}
        if out.image_options is not None:
            opts: dict[str, Any] = {"diskSize": out.image_options.disk_size}
            if out.image_options.disk_format is not DiskFormat.UNKNOWN:
                opts["diskFormat"] = out.image_options.disk_format.value
            if out.image_options.disk_format_options:
                opts["diskFormatOptions"] = out.image_options.disk_format_options
            output_doc["imageOptions"] = opts
        output_doc["outFormat"] = out.out_format.value
        doc["output"] = output_doc

        if self.overlay is not None:
            overlay_doc: dict[str, Any] = {
                "name": self.overlay.name,
                "image": self.overlay.image._to_document(),
            }
            if self.overlay.extra_options:
                overlay_doc["options"] = copy.deepcopy(self.overlay.extra_options)
            doc["overlay"] = overlay_doc
        return doc

    def to_yaml(self) -> str:
        """Return the YAML representation of the profile."""
        return yaml.safe_dump(self._to_document(), sort_keys=False, default_flow_style=False)


def _base(path: str) -> str:
    trimmed = path.rstrip("/")
    if not trimmed:
        return "/"
    return trimmed.rsplit("/", 1)[-1]


def _clean_container_asset(asset: ContainerAsset) -> None:
    asset.force_insecure = False
    if asset.oci_path:
        asset.oci_path = _base(asset.oci_path)
    if asset.tarball_path:
        asset.tarball_path = _base(asset.tarball_path)
    if asset.image_ref and "/" in asset.image_ref:
        asset.image_ref = asset.image_ref.rsplit("/", 1)[1]


def _clean_file_asset(asset: FileAsset) -> None:
    if asset.path:
        asset.path = _base(asset.path)


def clean(profile: Profile) -> None:
    """Remove non-deterministic parts (temporary directories, registries) in place."""
    _clean_container_asset(profile.input.base_installer)
    for asset in profile.input.system_extensions:
        _clean_container_asset(asset)
    for file_asset in (
        profile.input.kernel,
        profile.input.initramfs,
        profile.input.sd_boot,
        profile.input.sd_stub,
    ):
        _clean_file_asset(file_asset)


def hash_profile(profile: Profile) -> str:
    """Return a sha256 hex digest identifying the asset the profile describes.

    The profile is copied and cleaned first, so temporary paths do not change the hash.
    """
    prof = copy.deepcopy(profile)
    clean(prof)

    hasher = hashlib.sha256(prof.to_yaml().encode())

    # markers forcing assets to be rebuilt after fixes in asset generation
    if prof.board:
        hasher.update(b"board fix #65")
    if prof.output.kind is OutKind.INSTALLER:
        hasher.update(b"installer fix #8107")
    if prof.output.kind is OutKind.INSTALLER and prof.overlay is not None:
        hasher.update(b"overlay installer layout fix")

    return hasher.hexdigest()