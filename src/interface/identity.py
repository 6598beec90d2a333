"""Identity provider boundary.

The provider is external (an OAuth popup, a test fake). The core only ever asks
who is signed in; it never manages credentials.
"""

from typing import Protocol, runtime_checkable

from src.domain.user import Identity


@runtime_checkable
class IdentityProvider(Protocol):
    """Source of the currently signed-in identity."""

    def current_user(self) -> Identity | None:
        """Return the signed-in identity, or None for a guest."""
        ...

    async def sign_in(self) -> Identity:
        """Run the provider's sign-in flow and return the resulting identity."""
        ...

    async def sign_out(self) -> None: ...
