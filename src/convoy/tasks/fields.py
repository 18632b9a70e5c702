"""
Fields a module can report as changed.

A Query response of NeedsModification names the fields that differ, and the
following Modify request carries exactly that set.
"""

import enum


class Field(enum.Enum):
    """A property of a managed resource."""
    BRANCH = "branch"
    CONTENT = "content"
    DISABLE = "disable"
    ENABLE = "enable"
    GECOS = "gecos"
    GID = "gid"
    GROUP = "group"
    GROUPS = "groups"
    LOCATION = "location"
    MODE = "mode"
    OWNER = "owner"
    RESTART = "restart"
    SHELL = "shell"
    START = "start"
    STOP = "stop"
    UID = "uid"
    USERS = "users"
    VERSION = "version"
