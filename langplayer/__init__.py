"""Langplayer listening progress API."""
