"""Type definitions for credentials and persisted key-value state."""

from pydantic import BaseModel, Field, field_validator


class Credentials(BaseModel):
    """Bearer token plus the ``owner/name`` repository it grants access to."""

    token: str = Field(..., min_length=1)
    repo: str = Field(..., description="owner/name")

    @field_validator("repo")
    @classmethod
    def validate_repo(cls, v: str) -> str:
        v = v.strip().strip("/")
        owner, _, name = v.partition("/")
        if not owner or not name or "/" in name:
            raise ValueError(f"repo must look like 'owner/name': {v!r}")
        return v

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]
