from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import S3Error

from .config import Settings

logger = logging.getLogger(__name__)


def _build_minio_client(settings: Settings) -> Optional[Minio]:
    ep = settings.minio_endpoint.strip()
    if not ep:
        return None
    default_secure = None
    if ep.startswith("http://"):
        ep = ep[len("http://"):]
        default_secure = False
    elif ep.startswith("https://"):
        ep = ep[len("https://"):]
        default_secure = True

    if ":" in ep:
        host, port_str = ep.rsplit(":", 1)
        try:
            port = int(port_str)
        except ValueError:
            host, port = ep, None
    else:
        host, port = ep, None

    is_k8s_svc = host.endswith(".svc") or host.endswith(".svc.cluster.local")
    is_local = host.startswith("localhost") or host.endswith(".lan")
    secure = (default_secure if default_secure is not None else not (is_k8s_svc or is_local))
    if port is None:
        port = 80 if not secure else 9000

    return Minio(
        f"{host}:{port}",
        access_key=settings.minio_access_key,
        secret_key=settings.minio_secret_key,
        secure=secure,
    )


class PdfCache:
    """Read-only access to digest PDFs cached in MinIO under ``<date>/``."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Minio] = None) -> None:
        self.settings = settings or Settings()
        self.client = client if client is not None else _build_minio_client(self.settings)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def find_pdf(self, publication_date: date) -> Optional[str]:
        if not self.client:
            return None
        prefix = f"{publication_date.isoformat()}/"
        try:
            for obj in self.client.list_objects(self.settings.minio_bucket, prefix=prefix, recursive=True):
                if obj.object_name.lower().endswith(".pdf"):
                    return obj.object_name
        except S3Error as e:
            logger.warning(f"Could not list cached PDFs for {publication_date}: {e}")
        return None

    def fetch_pdf(self, publication_date: date, target: Path) -> Optional[Path]:
        """Download the cached PDF for a date to ``target``; None when absent."""
        object_name = self.find_pdf(publication_date)
        if not object_name:
            return None
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            response = self.client.get_object(self.settings.minio_bucket, object_name)
            try:
                data = response.read()
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            logger.error(f"Failed to download {object_name}: {e}")
            return None
        target.write_bytes(data)
        logger.info(f"Fetched cached PDF {object_name} ({len(data)} bytes) to {target}")
        return target
