"""Roles for workflow access control."""

from enum import Enum


class Role(str, Enum):
    """Workflow roles.

    ``PRO`` (public relations officer) and ``LEADER`` are parallel roles, neither
    implies the other.
    """

    TEAM_MEMBER = "team_member"
    PRO = "pro"
    LEADER = "leader"
