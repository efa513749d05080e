"""API routers for Storyforge."""

from storyforge.api.routers import media, projects, storyboard

__all__ = ["media", "projects", "storyboard"]
