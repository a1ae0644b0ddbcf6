# models/domain/directory_domain.py
"""
Directory reference data: staff users, departments and the resolved actor.
The complaint core only reads these; the sheets they come from are owned
by the school office.
"""

from enum import Enum

from pydantic import Field

from complaint_desk.models.domain.complaint_domain import CamelModel
from complaint_desk.utils.text import is_valid_email, norm, normalize_id


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
    PRINCIPAL = "PRINCIPAL"

    @classmethod
    def parse(cls, raw: object, default: "Role | None" = None) -> "Role | None":
        """Case-insensitive role lookup; unknown values yield `default`."""
        value = norm(raw).upper()
        try:
            return cls(value)
        except ValueError:
            return default


PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.PRINCIPAL})


class DirectoryUser(CamelModel):
    id: str
    name: str = ""
    role: Role = Role.EMPLOYEE
    department_id: str = ""
    army_mail: str | None = None
    google_mail: str | None = None

    @property
    def contact_email(self) -> str | None:
        """googleMail when valid, armyMail otherwise."""
        for candidate in (self.google_mail, self.army_mail):
            if candidate and is_valid_email(candidate):
                return candidate.strip()
        return None


class Department(CamelModel):
    id: str
    name: str = ""
    manager_user_id: str | None = None
    members: list[str] = Field(default_factory=list)


class Actor(CamelModel):
    """The authenticated caller of a workflow operation."""

    user_id: str
    role: Role
    department_id: str | None = None
    email: str | None = None
    name: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @classmethod
    def from_user(cls, user: DirectoryUser) -> "Actor":
        return cls(
            user_id=user.id,
            role=user.role,
            department_id=user.department_id or None,
            email=user.contact_email,
            name=user.name or None,
        )


class DirectorySnapshot:
    """Point-in-time view of users and departments with id lookups."""

    def __init__(self, users: list[DirectoryUser], departments: list[Department]):
        self.users = users
        self.departments = departments
        self._users_by_id = {normalize_id(user.id): user for user in users}
        self._users_by_email = {}
        for user in users:
            for email in (user.google_mail, user.army_mail):
                if email and norm(email) not in self._users_by_email:
                    self._users_by_email[norm(email)] = user
        self._departments_by_id = {normalize_id(dept.id): dept for dept in departments}

    def get_user(self, user_id: str | None) -> DirectoryUser | None:
        if not user_id:
            return None
        return self._users_by_id.get(normalize_id(user_id))

    def get_user_by_email(self, email: str | None) -> DirectoryUser | None:
        if not email:
            return None
        return self._users_by_email.get(norm(email))

    def get_department(self, department_id: str | None) -> Department | None:
        if not department_id:
            return None
        return self._departments_by_id.get(normalize_id(department_id))

    def principals(self) -> list[DirectoryUser]:
        return [user for user in self.users if user.role == Role.PRINCIPAL]

    def is_member(self, user_id: str | None, department_id: str | None) -> bool:
        """Own department, explicit membership or management all count."""
        if not user_id or not department_id:
            return False
        wanted_user = normalize_id(user_id)
        wanted_dept = normalize_id(department_id)
        user = self.get_user(user_id)
        if user and normalize_id(user.department_id) == wanted_dept:
            return True
        department = self.get_department(department_id)
        if department is None:
            return False
        if department.manager_user_id and normalize_id(department.manager_user_id) == wanted_user:
            return True
        return any(normalize_id(member) == wanted_user for member in department.members)

    def to_dict(self) -> dict:
        return {
            "users": [user.model_dump(mode="json", by_alias=True) for user in self.users],
            "departments": [
                dept.model_dump(mode="json", by_alias=True) for dept in self.departments
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DirectorySnapshot":
        return cls(
            users=[DirectoryUser.model_validate(item) for item in data.get("users", [])],
            departments=[Department.model_validate(item) for item in data.get("departments", [])],
        )
