"""Supabase Storage backed upload store."""

from dataclasses import dataclass

from supabase import Client

from game_cocreator.services.uploads import UploadStore


@dataclass
class SupabaseUploadStore(UploadStore):
    """Stores uploaded step content in a Supabase Storage bucket."""

    client: Client
    bucket: str

    def store(self, path: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return their public URL."""
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(path, data, {"content-type": content_type})
        return bucket.get_public_url(path)
