from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True, slots=True)
class SandboxCapabilities:
    """Guarantees the in-process sandbox does and does not provide.

    Example:
        ```python
        caps = SandboxCapabilities(True, True, False, True, False, False)
        ```
    """

    supports_cooperative_timeout: bool
    supports_sync_loop_interrupt: bool
    supports_native_call_interrupt: bool
    supports_scope_restriction: bool
    supports_security_isolation: bool
    guaranteed_stop: bool

    def as_rows(self) -> list[tuple[str, bool]]:
        """Return `(name, supported)` pairs for display.

        Example:
            ```python
            for name, supported in caps.as_rows(): ...
            ```
        """
        return list(asdict(self).items())


def sandbox_capabilities() -> SandboxCapabilities:
    """Return what the in-thread sandbox guarantees.

    Awaiting scripts are cancelled at the deadline and synchronous script
    loops are interrupted line by line. Long native calls are not
    interrupted. Names are restricted, but objects are not isolated, and a
    caller stop is best effort.

    Example:
        ```python
        caps = sandbox_capabilities()
        ```
    """
    return SandboxCapabilities(
        supports_cooperative_timeout=True,
        supports_sync_loop_interrupt=True,
        supports_native_call_interrupt=False,
        supports_scope_restriction=True,
        supports_security_isolation=False,
        guaranteed_stop=False,
    )
