"""Plain dict renderings of the haulage models for JsonResponse."""


def profile_to_dict(user):
    if user is None:
        return None
    return {
        "id": user.pk,
        "username": user.username,
        "full_name": user.full_name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
    }


def stop_to_dict(stop):
    return {
        "id": stop.pk,
        "type": stop.type,
        "seq": stop.seq,
        "name": stop.name,
        "address_line1": stop.address_line1,
        "address_line2": stop.address_line2,
        "city": stop.city,
        "postcode": stop.postcode,
        "window_from": stop.window_from.strftime("%H:%M") if stop.window_from else None,
        "window_to": stop.window_to.strftime("%H:%M") if stop.window_to else None,
        "notes": stop.notes,
    }


def job_to_dict(job, user=None):
    data = {
        "id": job.pk,
        "order_number": job.order_number,
        "status": job.status,
        "status_display": job.get_status_display(),
        "assigned_driver_id": job.assigned_driver_id,
        "notes": job.notes,
        "collection_date": job.collection_date,
        "delivery_date": job.delivery_date,
        "last_status_update_at": job.last_status_update_at,
        "overdue_notification_sent": job.overdue_notification_sent,
        "cancelled_at": job.cancelled_at,
        "created_at": job.created_at,
        "version": job.version,
    }
    # Price is for admin/office eyes only
    if user is None or getattr(user, "role", None) in ("admin", "office"):
        data["price"] = job.price
    return data


def log_to_dict(log):
    return {
        "id": log.pk,
        "job_id": log.job_id,
        "stop_id": log.stop_id,
        "actor_id": log.actor_id,
        "actor_role": log.actor_role,
        "action_type": log.action_type,
        "timestamp": log.timestamp,
        "notes": log.notes,
        "visible_in_timeline": log.visible_in_timeline,
        "is_backfill": log.is_backfill,
        "lat": log.lat,
        "lon": log.lon,
    }


def document_to_dict(document):
    return {
        "id": document.pk,
        "job_id": document.job_id,
        "stop_id": document.stop_id,
        "type": document.type,
        "original_filename": document.original_filename,
        "storage_path": document.storage_path,
        "uploaded_by_id": document.uploaded_by_id,
        "created_at": document.created_at,
    }


def audit_to_dict(entry):
    return {
        "id": entry.pk,
        "entity": entry.entity,
        "entity_id": entry.entity_id,
        "action": entry.action,
        "before": entry.before,
        "after": entry.after,
        "notes": entry.notes,
        "actor_id": entry.actor_id,
        "created_at": entry.created_at,
    }


def next_action_to_dict(action):
    if action is None:
        return None
    return {
        "action": action.action,
        "next_status": action.next_status,
        "label": action.label,
        "stop_id": action.stop.pk if action.stop is not None else None,
    }
