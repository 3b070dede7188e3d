"""Publish webcast meeting recordings as podcast episodes."""
