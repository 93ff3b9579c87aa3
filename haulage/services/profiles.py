from django.contrib.auth import get_user_model


def list_profiles(org, roles=None):
    """Active users of an organisation, optionally limited to some roles."""
    qs = get_user_model().objects.filter(org=org, is_active=True)
    if roles:
        qs = qs.filter(role__in=list(roles))
    return qs.order_by("first_name", "last_name", "username")


def office_staff(org):
    return list_profiles(org, roles=("admin", "office"))


def get_driver(org, driver_id):
    """Resolve a driver id within the organisation, None when it does not."""
    if driver_id in (None, ""):
        return None
    try:
        return list_profiles(org, roles=("driver",)).filter(pk=driver_id).first()
    except (TypeError, ValueError):
        return None
