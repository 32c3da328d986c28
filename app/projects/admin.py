"""
Project admin configuration.
"""

from django.contrib import admin

from projects.models import Milestone, Project, ProjectMember, RevenueSplit


class ProjectMemberInline(admin.TabularInline):
    model = ProjectMember
    extra = 0
    fields = ["user", "role", "payout_account_id"]


class RevenueSplitInline(admin.TabularInline):
    """Read-only; splits are replaced through ProjectService."""

    model = RevenueSplit
    extra = 0
    can_delete = False
    fields = ["position", "recipient", "placeholder_label", "percentage", "is_active"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "owner", "currency", "created_at"]
    search_fields = ["id", "title", "owner__username", "owner__email"]
    inlines = [ProjectMemberInline, RevenueSplitInline]
    ordering = ["-created_at"]


@admin.register(Milestone)
class MilestoneAdmin(admin.ModelAdmin):
    """Status is FSM-protected; transitions go through MilestoneService."""

    list_display = ["id", "project", "title", "amount_cents", "currency", "status", "created_at"]
    list_filter = ["status", "currency"]
    search_fields = ["id", "title", "project__title"]
    readonly_fields = [
        "status",
        "completed_by",
        "funded_at",
        "completed_at",
        "approved_at",
        "disputed_at",
        "rejected_at",
        "dispute_reason",
        "version",
    ]
    ordering = ["-created_at"]
