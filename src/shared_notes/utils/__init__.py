"""Utility helpers for SharedNotes."""
