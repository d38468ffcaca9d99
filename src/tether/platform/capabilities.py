import sys
from dataclasses import dataclass

# Runtimes without process spawning.
_SANDBOXED_PLATFORMS = ("emscripten", "wasi")


@dataclass(frozen=True)
class Platform:
    """What the host runtime can do, as far as transports are concerned."""

    supports_subprocess: bool = True

    @classmethod
    def current(cls) -> "Platform":
        """Detect capabilities of the running interpreter."""
        return cls(supports_subprocess=sys.platform not in _SANDBOXED_PLATFORMS)
