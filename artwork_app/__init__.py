"""Artwork catalog application package."""
