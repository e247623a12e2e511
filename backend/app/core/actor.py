"""Acting user supplied by the identity collaborator."""

from dataclasses import dataclass

from .enums import RoleName


@dataclass(frozen=True)
class Actor:
    """The user performing an operation; trusted as given."""

    user_id: str
    role: RoleName

    @property
    def is_admin(self) -> bool:
        return self.role == RoleName.ADMIN

    @property
    def is_tutor(self) -> bool:
        return self.role == RoleName.TUTOR

    @property
    def is_student(self) -> bool:
        return self.role == RoleName.STUDENT

    @property
    def is_staff(self) -> bool:
        return self.role in (RoleName.ADMIN, RoleName.TUTOR)
