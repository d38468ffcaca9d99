from copy import deepcopy

from tether.protocol.roots import Root


class RootsManager:
    """Roots a client session exposes to its server."""

    def __init__(self):
        self._roots: list[Root] = []

    def add_root(self, root: Root) -> bool:
        """Register a root. Returns False if a root with that URI exists."""
        if any(existing.uri == root.uri for existing in self._roots):
            return False
        self._roots.append(root)
        return True

    def remove_root(self, uri: str) -> bool:
        """Remove a root by URI. Returns True if something was removed."""
        for i, root in enumerate(self._roots):
            if root.uri == uri:
                self._roots.pop(i)
                return True
        return False

    def clear_roots(self) -> None:
        """Remove all roots."""
        self._roots.clear()

    def get_roots(self) -> list[Root]:
        """Get a copy of all roots."""
        return deepcopy(self._roots)
