"""Repository entity - represents one managed storage area."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Repository(BaseModel):
    """A named, filesystem-backed artifact repository.

    The name doubles as a path segment under the base storage and as the
    suffix of the scheduler job id, so it may not contain path separators.
    """

    model_config = ConfigDict(validate_assignment=True)

    name: str = Field(..., description="Unique repository name")
    location: Optional[str] = None
    url: str = Field(..., min_length=1, description="Publication endpoint path")
    proxy: Optional[str] = None
    mirror: bool = False
    realm: Optional[str] = None
    download_role: Optional[str] = None
    upload_role: Optional[str] = None
    scheduling: Optional[str] = None
    scheduling_action: Optional[str] = None
    pool_size: int = Field(default=8, gt=0)

    @field_validator("name")
    @classmethod
    def name_is_path_safe(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Repository name cannot be empty")
        if "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(f"Repository name '{v}' is not a valid path segment")
        return v
