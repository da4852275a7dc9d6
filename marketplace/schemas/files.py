from pydantic import BaseModel


class StoredFileRead(BaseModel):
    file_id: str
    file_name: str
    content_type: str
    size_bytes: int
    checksum_sha256: str
    url: str
