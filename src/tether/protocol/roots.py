"""
Filesystem scope the client exposes to servers.

Servers ask for roots to learn which filesystem locations they may operate
on. The client answers from its RootsManager and tells connected servers when
the list changes.
"""

from typing import Any

from pydantic import Field

from tether.protocol.base import ProtocolModel


class Root(ProtocolModel):
    """
    A filesystem resource that the server can access.
    """

    uri: str
    """
    The location this server can access.

    Supports file:// URIs for local filesystem access and other URI schemes
    depending on server capabilities.
    """

    name: str | None = None
    """
    Optional human-readable identifier for this root.
    """

    metadata: dict[str, Any] | None = Field(default=None, alias="_meta")
    """
    Additional metadata about the root.
    """
