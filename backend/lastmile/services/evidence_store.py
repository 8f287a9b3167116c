# Overview: Local-disk storage for delivery evidence photos; returns references for the ledger.

from __future__ import annotations

import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from ..validation import ValidationError

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic"}


def _upload_root() -> str:
    base = current_app.config["EVIDENCE_UPLOAD_DIR"]
    if not os.path.isabs(base):
        base = os.path.join(current_app.instance_path, base)
    return base


def _evidence_dir() -> str:
    path = os.path.join(_upload_root(), "evidence")
    os.makedirs(path, exist_ok=True)
    return path


def save_evidence(delivery_id: int, files) -> list[str]:
    """
    Store uploaded photos and return their references ("evidence/<name>").

    Empty file fields (no filename) are skipped; unsupported extensions
    are rejected before anything is written. A failed write removes the
    files already stored for this call.
    """
    uploads = [f for f in files or () if f is not None and f.filename]
    for upload in uploads:
        ext = os.path.splitext(secure_filename(upload.filename))[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(f"Unsupported evidence file type: {upload.filename}")

    if not uploads:
        return []

    target = _evidence_dir()
    references = []
    try:
        for upload in uploads:
            ext = os.path.splitext(secure_filename(upload.filename))[1].lower()
            name = f"{delivery_id}_{uuid.uuid4().hex}{ext}"
            upload.save(os.path.join(target, name))
            references.append(f"evidence/{name}")
    except Exception:
        discard_evidence(references)
        raise
    return references


def discard_evidence(references) -> None:
    """Remove stored photos whose stop command was rejected or rolled back."""
    root = _upload_root()
    for ref in references or ():
        path = os.path.join(root, ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError:
            current_app.logger.warning("Could not remove evidence file %s", path, exc_info=True)
