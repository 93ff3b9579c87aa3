from django.core.exceptions import NON_FIELD_ERRORS


class ServiceError(Exception):
    """
    Business rule violation raised by the service layer.

    Views turn these into `{"ok": false, "error": {...}}` responses; `kind`
    and `status_code` decide the shape and the HTTP status.
    """

    kind = "service"
    status_code = 400

    def __init__(self, message, *, field=None, entry_index=None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.entry_index = entry_index

    def as_dict(self):
        error = {"kind": self.kind, "message": self.message}
        if self.field is not None:
            error["field"] = self.field
        if self.entry_index is not None:
            error["entry_index"] = self.entry_index
        return error


class AuthorizationError(ServiceError):
    kind = "authorization"
    status_code = 403


class ValidationError(ServiceError):
    kind = "validation"
    status_code = 400

    @classmethod
    def from_django(cls, exc, *, prefix=None, entry_index=None):
        """First message of a django.core.exceptions.ValidationError."""
        if hasattr(exc, "error_dict"):
            field, messages = next(iter(exc.message_dict.items()))
            if field == NON_FIELD_ERRORS:
                field = None
            elif prefix:
                field = f"{prefix}.{field}"
            return cls(messages[0], field=field, entry_index=entry_index)
        return cls(exc.messages[0], field=prefix, entry_index=entry_index)


class NotFoundError(ServiceError):
    kind = "not_found"
    status_code = 404


class ConflictError(ServiceError):
    """Stale expected_version; the caller may reload and retry."""

    kind = "conflict"
    status_code = 409


class CollaboratorError(ServiceError):
    """Storage, notification or another external dependency failed."""

    kind = "collaborator"
    status_code = 502
