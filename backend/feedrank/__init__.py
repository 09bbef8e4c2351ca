"""Balanced feed ranking maintenance service."""
