"""Storyforge HTTP API."""
