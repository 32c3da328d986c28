"""
URL configuration for the projects app.

Included under /api/v1/ so both /projects/ and /milestones/ live at the
top level.
"""

from rest_framework.routers import SimpleRouter

from projects.views import MilestoneViewSet, ProjectViewSet

app_name = "projects"

router = SimpleRouter()
router.register(r"projects", ProjectViewSet, basename="project")
router.register(r"milestones", MilestoneViewSet, basename="milestone")

urlpatterns = router.urls
