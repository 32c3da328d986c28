"""
Projects app configuration.
"""

from django.apps import AppConfig


class ProjectsConfig(AppConfig):
    """Projects, members, revenue splits and milestones."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "projects"
    verbose_name = "Projects"
