"""Utility helpers shared across the settlement package."""
