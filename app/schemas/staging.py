from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

FileRole = Literal["document", "audio"]
FILE_ROLES: tuple[FileRole, ...] = ("document", "audio")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileDescriptor(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    size: int = Field(ge=0)
    mime_type: str = Field(default="application/octet-stream", max_length=120)
    last_modified: datetime
    role: FileRole
    store_key: str = Field(min_length=1, max_length=120)
    extracted_text: str | None = None


class SessionBundle(CamelModel):
    primary: FileDescriptor
    count: int = Field(ge=1)
    members: list[FileDescriptor] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_members(self) -> "SessionBundle":
        if len(self.members) != self.count:
            raise ValueError("count must equal the number of members")
        if self.members[0] != self.primary:
            raise ValueError("primary must be the first member")
        keys = [member.store_key for member in self.members]
        if len(set(keys)) != len(keys):
            raise ValueError("member store keys must be distinct")
        if any(member.role != self.primary.role for member in self.members):
            raise ValueError("all members must share one role")
        return self

    @property
    def role(self) -> FileRole:
        return self.primary.role

    def member(self, index: int) -> FileDescriptor | None:
        if 0 <= index < len(self.members):
            return self.members[index]
        return None


class SessionCreatedResponse(CamelModel):
    session_id: str
