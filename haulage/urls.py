"""
URL routing for the haulage app.

- /jobs/ -> list (GET) or create (POST)
- /jobs/<id>/ -> job with stops, timeline and documents
- /jobs/<id>/<action>/ -> mutations, all POST
"""

from django.urls import path

from . import views

urlpatterns = [
    path("jobs/", views.job_list, name="job_list"),
    path("jobs/<uuid:job_id>/", views.job_detail, name="job_detail"),
    path("jobs/<uuid:job_id>/update/", views.update_job, name="job_update"),
    path(
        "jobs/<uuid:job_id>/progress/",
        views.update_job_progress,
        name="job_progress",
    ),
    path("jobs/<uuid:job_id>/cancel/", views.cancel_job_view, name="job_cancel"),
    path("jobs/<uuid:job_id>/notes/", views.add_note, name="job_add_note"),
    path(
        "jobs/<uuid:job_id>/documents/",
        views.upload_job_document,
        name="job_upload_document",
    ),
    path(
        "jobs/<uuid:job_id>/next-action/",
        views.next_action,
        name="job_next_action",
    ),
    path("jobs/<uuid:job_id>/audit/", views.job_audit, name="job_audit"),
    path(
        "progress-logs/<int:log_id>/visibility/",
        views.timeline_visibility,
        name="progress_log_visibility",
    ),
    path("drivers/", views.profiles, name="driver_list"),
]
