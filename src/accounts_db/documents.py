"""Pydantic shapes for JSON documents embedded in accounts records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Member(BaseModel):
    """One entry of ``workspace.members`` or ``workspace.integrations``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    role: str = ""
    invited_by: str = Field(default="", alias="invitedBy")
    disabled: bool = False

    @property
    def active(self) -> bool:
        return not self.disabled


class WorkspaceRole(BaseModel):
    """One ``{workspace_id, role_id}`` entry of ``permittable.workspace_roles``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    workspace_id: str
    role_id: str

    @property
    def key(self) -> str:
        return f"{self.workspace_id}:{self.role_id}"


def parse_members(raw: dict[str, Any] | None) -> dict[str, Member]:
    """Parse a members/integrations map; ``None`` becomes an empty map."""

    return {member_id: Member.model_validate(entry or {}) for member_id, entry in (raw or {}).items()}


def dump_members(members: dict[str, Member]) -> dict[str, dict[str, Any]]:
    return {member_id: member.model_dump() for member_id, member in members.items()}


def parse_workspace_roles(raw: list[dict[str, Any]] | None) -> list[WorkspaceRole]:
    return [WorkspaceRole.model_validate(entry) for entry in (raw or [])]


def dump_workspace_roles(entries: list[WorkspaceRole]) -> list[dict[str, str]]:
    return [entry.model_dump() for entry in entries]


__all__ = [
    "Member",
    "WorkspaceRole",
    "dump_members",
    "dump_workspace_roles",
    "parse_members",
    "parse_workspace_roles",
]
