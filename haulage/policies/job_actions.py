from haulage.models import Job
from haulage.policies.roles import is_driver, is_staff_role
from haulage.services import status_flow


def actions_for(user, job: Job) -> list[str]:
    """Actions the jobs table offers this user on this job."""
    actions: list[str] = []

    if user.org_id != job.org_id:
        return actions

    open_job = not status_flow.is_terminal(job.status)

    if is_staff_role(user):
        if job.status != Job.Status.CANCELLED:
            actions.append("edit_job")
        if job.status in [Job.Status.PLANNED, Job.Status.ASSIGNED]:
            actions.append("assign_driver")
        if open_job:
            actions.append("update_progress")
            actions.append("cancel_job")

    if is_driver(user) and job.assigned_driver_id == user.pk:
        if open_job:
            actions.append("update_progress")
            actions.append("view_next_action")
        if job.status != Job.Status.CANCELLED:
            actions.append("edit_stop_window")

    # Common actions
    if job.status != Job.Status.CANCELLED and (
        is_staff_role(user) or job.assigned_driver_id == user.pk
    ):
        actions.append("upload_document")
    return actions
