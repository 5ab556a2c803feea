"""Schematics, schematic storage, imager profiles, SecureBoot options and an HTTP client for a Talos image factory."""

__version__ = "0.1.0"