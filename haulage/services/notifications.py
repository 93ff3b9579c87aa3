import logging

from django.db import transaction

from haulage.models import Notification

logger = logging.getLogger(__name__)


def job_link(job) -> str:
    return f"/jobs/{job.pk}"


def _deliver(org_id, user_ids, title, message, link_to):
    try:
        Notification.objects.bulk_create(
            [
                Notification(
                    org_id=org_id,
                    user_id=user_id,
                    title=title,
                    message=message,
                    link_to=link_to,
                )
                for user_id in user_ids
            ]
        )
    except Exception:
        logger.exception("Failed to deliver notification %r to %s", title, user_ids)
        return
    logger.info("Notified %d user(s): %s", len(user_ids), title)


def notify(users, title, message, link_to=""):
    """
    Fire-and-forget in-app notification, sent once the current transaction
    commits. Failures are logged and never reach the caller.
    """
    recipients = {}
    for user in users:
        if user is not None:
            recipients[user.pk] = user.org_id
    if not recipients:
        return

    user_ids = list(recipients)
    org_id = next(iter(recipients.values()))
    transaction.on_commit(lambda: _deliver(org_id, user_ids, title, message, link_to))
