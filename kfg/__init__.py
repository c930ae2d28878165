"""Declarative shell workflow manifests: parsing, validation, resolution and Imagefile parsing."""

__version__ = "0.1.0"

__all__ = ["imagefile", "manifest", "manifest_parser", "resolve"]