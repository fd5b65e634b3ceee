from qorinti.models.driver import Driver
from qorinti.models.user import User

DEFAULT_DRIVER_NAME = "Conductor"


def _first_non_blank(*values: str | None) -> str | None:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


def get_display_name(driver: Driver | None, user: User | None = None) -> str:
    """Printable driver name, preferring the directory entry over the account.

    The name is printed on tax documents, so the account email is never used.
    """
    if driver is not None:
        joined = " ".join(
            part.strip() for part in (driver.first_names, driver.last_names) if part and part.strip()
        )
        name = _first_non_blank(driver.full_name, driver.name, joined)
        if name:
            return name
    if user is not None:
        name = _first_non_blank(user.display_name)
        if name:
            return name
    return DEFAULT_DRIVER_NAME
