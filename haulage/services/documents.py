import logging

from django.db import transaction
from django.utils import timezone

from haulage.models import Document, Job, JobProgressLog, JobStop
from haulage.services.exceptions import (
    CollaboratorError,
    NotFoundError,
    ValidationError,
)
from haulage.services.progress import (
    apply_progress_update,
    authorise_job_access,
    record_event,
)

logger = logging.getLogger(__name__)


def is_proof_of_delivery(doc_type, stop) -> bool:
    return (
        stop is not None
        and stop.type == JobStop.StopType.DELIVERY
        and doc_type in Document.PROOF_OF_DELIVERY_TYPES
    )


def _store(document, uploaded_file):
    """Write the file through the storage backend; CollaboratorError on failure."""
    try:
        document.file.save(uploaded_file.name, uploaded_file, save=False)
    except Exception as exc:
        logger.exception(
            "Storage write failed for %s on job %s", uploaded_file.name, document.job_id
        )
        raise CollaboratorError("The file could not be stored. Try again.") from exc


def upload_document(
    job, actor, uploaded_file, doc_type, stop=None, notes="", timestamp=None
):
    """
    Store a document and log it against the job.

    A POD or signature for a delivery stop records that stop's
    `pod_received`; anything else logs `document_uploaded`. Nothing is
    logged when the storage write fails.
    """
    authorise_job_access(job, actor)
    if doc_type not in Document.DocumentType.values:
        raise ValidationError(f"Unknown document type '{doc_type}'.", field="type")
    if stop is not None and stop.job_id != job.pk:
        raise NotFoundError("Stop not found on this job.", field="stop_id")
    if job.status == Job.Status.CANCELLED:
        raise ValidationError("Cancelled jobs accept no documents.", field="status")
    if uploaded_file is None:
        raise ValidationError("A file is required.", field="file")

    document = Document(
        org_id=job.org_id,
        job=job,
        stop=stop,
        type=doc_type,
        original_filename=uploaded_file.name,
        uploaded_by=actor,
    )
    _store(document, uploaded_file)

    try:
        with transaction.atomic():
            document.save()
            label = document.get_type_display()
            note = notes or f"{label}: {document.original_filename}"
            if is_proof_of_delivery(doc_type, stop):
                logs = apply_progress_update(
                    job,
                    Job.Status.POD_RECEIVED,
                    timestamp or timezone.now(),
                    actor,
                    notes=note,
                    stop=stop,
                )
            else:
                logs = [
                    record_event(
                        job,
                        actor,
                        JobProgressLog.ActionType.DOCUMENT_UPLOADED,
                        timestamp=timestamp,
                        notes=note,
                        stop=stop,
                    )
                ]
    except Exception:
        document.file.delete(save=False)
        raise

    logger.info(
        "Document %s (%s) uploaded to job %s by %s",
        document.pk,
        doc_type,
        job.pk,
        actor.pk,
    )
    return document, logs
