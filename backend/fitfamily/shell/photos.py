"""Photo Storage - Uploader contract and object path naming.

The object store itself is provided by the deployment; services receive an
uploader and only attach a URL after the upload succeeded.
"""

from datetime import datetime
from typing import Protocol


class PhotoUploader(Protocol):
    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes at ``path`` and return a download URL."""
        ...


def photo_object_path(kind: str, user_id: str, key: str, uploaded_at: datetime, filename: str) -> str:
    """Namespaced, timestamp-suffixed object path.

    Example:
        workouts/user1/2025-06-10_1749556800000.jpg
    """
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else "jpg"
    millis = int(uploaded_at.timestamp() * 1000)
    return f"{kind}/{user_id}/{key}_{millis}.{extension}"
