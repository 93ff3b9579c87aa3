from django import forms

from .models import Document
from .services.exceptions import ValidationError


class ProgressEntryForm(forms.Form):
    """
    One progress entry as posted by the dashboard or the driver app.

    Only shapes are checked here; whether the status may be set is decided by
    the progress engine.
    """

    status = forms.CharField(max_length=30)
    # ISO-8601; naive values are read in the site time zone
    timestamp = forms.DateTimeField()
    notes = forms.CharField(required=False)
    stop_id = forms.UUIDField(required=False)
    lat = forms.DecimalField(max_digits=9, decimal_places=6, required=False)
    lon = forms.DecimalField(max_digits=9, decimal_places=6, required=False)

    def __init__(self, data=None, *args, **kwargs):
        # The edge API calls the field new_status
        if data is not None and "status" not in data and "new_status" in data:
            data = dict(data)
            data["status"] = data.pop("new_status")
        super().__init__(data, *args, **kwargs)


class VersionForm(forms.Form):
    """Optimistic lock token sent back by clients that read the job first."""

    expected_version = forms.IntegerField(required=False, min_value=1)


class DocumentUploadForm(forms.ModelForm):
    """Multipart upload of a POD, signature, photo or paperwork."""

    stop_id = forms.UUIDField(required=False)
    notes = forms.CharField(required=False)

    class Meta:
        model = Document
        fields = ["type", "file"]


def raise_form_errors(form, entry_index=None):
    """Turn the first form error into a service ValidationError."""
    field, messages = next(iter(form.errors.items()))
    raise ValidationError(
        messages[0],
        field=None if field == "__all__" else field,
        entry_index=entry_index,
    )
