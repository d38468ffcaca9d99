from typing import Any

from pydantic import Field

from tether.protocol.base import ProtocolModel


class Implementation(ProtocolModel):
    """Name and version string of the server or client."""

    name: str
    version: str


class ClientCapabilities(ProtocolModel):
    """
    Capabilities a client session advertises when it connects.
    """

    experimental: dict[str, Any] | None = None
    """
    Experimental or non-standard capabilities.
    """

    roots: bool = True
    """
    Whether servers may ask the client for its filesystem roots.
    """

    roots_list_changed: bool = Field(default=True, alias="rootsListChanged")
    """
    Whether the client notifies servers when its roots change.
    """

    sampling: bool = False
    """
    LLM sampling support from the host. Only honoured when the protocol
    session is given a sampling handler.
    """
