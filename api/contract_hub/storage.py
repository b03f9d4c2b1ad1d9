import io

from minio import Minio

from .config import Settings


class ArtifactStorage:
    def __init__(self, settings: Settings, client: Minio = None):
        self.bucket = settings.minio_bucket
        self._client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=False,
        )

    def ensure_bucket(self):
        if not self._client.bucket_exists(self.bucket):
            self._client.make_bucket(self.bucket)

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.ensure_bucket()
        self._client.put_object(self.bucket, key, io.BytesIO(data), length=len(data), content_type=content_type)

    def get_bytes(self, key: str) -> bytes:
        resp = self._client.get_object(self.bucket, key)
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()
