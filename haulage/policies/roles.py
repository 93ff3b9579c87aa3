def is_admin(user) -> bool:
    return getattr(user, "role", None) == "admin"


def is_office(user) -> bool:
    return getattr(user, "role", None) == "office"


def is_driver(user) -> bool:
    return getattr(user, "role", None) == "driver"


def is_staff_role(user) -> bool:
    """Admin and office share every back-office permission."""
    return is_admin(user) or is_office(user)
