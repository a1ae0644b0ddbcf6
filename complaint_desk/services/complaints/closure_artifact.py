"""Closure summary attached to the reporter's closing e-mail."""

from dataclasses import dataclass
from typing import Protocol

from complaint_desk.models.domain.complaint_domain import Complaint, to_iso
from complaint_desk.models.domain.directory_domain import DirectorySnapshot


class ClosureArtifactRenderer(Protocol):
    filename_suffix: str
    mime_type: str

    def render(self, complaint: Complaint, directory: DirectorySnapshot) -> bytes: ...


@dataclass
class ClosureArtifact:
    filename: str
    mime_type: str
    content: bytes


def build_closure_artifact(
    renderer: ClosureArtifactRenderer, complaint: Complaint, directory: DirectorySnapshot
) -> ClosureArtifact:
    return ClosureArtifact(
        filename=f"complaint-{complaint.id}{renderer.filename_suffix}",
        mime_type=renderer.mime_type,
        content=renderer.render(complaint, directory),
    )


class TextClosureArtifactRenderer:
    """Plain UTF-8 summary of the decision and the reply letter."""

    filename_suffix = ".txt"
    mime_type = "text/plain"

    def render(self, complaint: Complaint, directory: DirectorySnapshot) -> bytes:
        review = complaint.principal_review
        department = directory.get_department(complaint.department_id)
        signer = directory.get_user(review.signed_by_user_id) if review else None

        lines = [
            f"סיכום טיפול בפנייה #{complaint.id}",
            f"נושא: {complaint.subject}",
            f"כותרת: {complaint.title}",
            f"מחלקה: {department.name if department else complaint.department_id or '-'}",
            f"נפתחה: {to_iso(complaint.created_at)}",
        ]
        if review:
            lines += [
                f"נסגרה: {to_iso(review.signed_at)}",
                f"החלטה: {'מוצדקת' if review.justified else 'לא מוצדקת'}",
                f"חתום/ה: {signer.name if signer else review.signed_by_user_id}",
                "",
                "סיכום:",
                review.summary,
            ]
        if complaint.has_employee_letter():
            lines += ["", "מכתב מענה:", complaint.assignee_letter.body]
        return ("\n".join(lines) + "\n").encode("utf-8")
