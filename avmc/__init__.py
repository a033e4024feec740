"""Organise video files by catalogue code into a media library with NFO and artwork sidecars."""

__version__ = "0.1.0"