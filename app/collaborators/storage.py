# app/collaborators/storage.py
from __future__ import annotations

from app.collaborators.base import CollaboratorResult
from app.collaborators.http import HttpClient, error_text


def extract_object_key(file_ref: str) -> str:
    """
    Accepts either a bare object key or a full bucket URL.
    https://bucket.s3.region.amazonaws.com/path/to/file.zip -> path/to/file.zip
    """
    ref = (file_ref or "").strip()
    if ".amazonaws.com/" in ref:
        return ref.split(".amazonaws.com/", 1)[1]
    if ref.startswith(("http://", "https://")):
        return ""
    return ref.lstrip("/")


class HttpAssetStorage:
    def __init__(self, *, base_url: str, api_key: str, http: HttpClient):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http

    def schedule_deletion(self, product_file_ref: str) -> CollaboratorResult:
        key = extract_object_key(product_file_ref)
        if not key:
            return CollaboratorResult(ok=False, error=f"Cannot extract object key from {product_file_ref!r}")
        resp = self.http.post(
            f"{self.base_url}/v1/assets/deletions",
            headers={"X-Api-Key": self.api_key},
            json_body={"key": key},
        )
        if resp.ok:
            return CollaboratorResult(ok=True, response={"http_status": resp.status_code})
        return CollaboratorResult(ok=False, response={"http_status": resp.status_code}, error=error_text(resp))
