"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import File, Header, HTTPException, Request, UploadFile, status

CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
}


@dataclass(frozen=True)
class RequestContext:
    actor: str
    client_ip: str | None = None
    user_agent: str | None = None


def get_csv_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is a CSV by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").strip().lower()

    is_csv_filename = filename.endswith(".csv")
    is_csv_content_type = content_type in CSV_CONTENT_TYPES

    if not is_csv_filename and not is_csv_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are allowed.",
        )

    return file


def get_request_context(
    request: Request,
    x_actor_id: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
    x_forwarded_for: str | None = Header(default=None),
) -> RequestContext:
    """
    Resolve the submitting actor and client details.

    Authentication happens upstream; the gateway forwards the authenticated
    user id in ``X-Actor-Id``.
    """

    actor = (x_actor_id or "").strip()
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required.",
        )

    if x_forwarded_for:
        client_ip = x_forwarded_for.split(",")[0].strip() or None
    else:
        client_ip = request.client.host if request.client else None

    return RequestContext(actor=actor, client_ip=client_ip, user_agent=user_agent)
