import enum


class VersionStatus(str, enum.Enum):
    """Version flag shared by templates and consents; one ACTIVE row per logical id."""

    ACTIVE = "ACTIVE"
    SUPERSEDED = "SUPERSEDED"


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
