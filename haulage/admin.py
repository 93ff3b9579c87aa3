from django.contrib import admin

from .models import AuditLog, Document, Job, JobProgressLog, JobStop, Notification


class JobStopInline(admin.TabularInline):
    model = JobStop
    extra = 0


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ("order_number", "org", "status", "assigned_driver", "created_at")
    list_filter = ("status", "org")
    search_fields = ("order_number",)
    readonly_fields = ("version", "cancelled_at", "deleted_at", "last_status_update_at")
    inlines = [JobStopInline]


@admin.register(JobProgressLog)
class JobProgressLogAdmin(admin.ModelAdmin):
    list_display = ("job", "action_type", "actor", "timestamp", "visible_in_timeline")
    list_filter = ("action_type", "is_backfill", "visible_in_timeline")
    fields = (
        "job",
        "stop",
        "actor",
        "action_type",
        "timestamp",
        "notes",
        "visible_in_timeline",
    )
    readonly_fields = ("job", "stop", "actor", "action_type", "timestamp", "notes")

    # Append-only: rows are written by the services
    def has_add_permission(self, request):
        return False

    def save_model(self, request, obj, form, change):
        obj.save(update_fields=["visible_in_timeline"])

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("entity", "entity_id", "action", "actor", "created_at")
    list_filter = ("entity", "action")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


admin.site.register(Document)
admin.site.register(Notification)
