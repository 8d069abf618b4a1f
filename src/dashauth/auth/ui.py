"""Sign-in UI collaborator.

The coordinator never renders anything. It tells a :class:`SignInUI` when to
show or hide the sign-in affordance and when to report an error; the host
decides what that looks like.
"""

from __future__ import annotations

from typing import Protocol

from dashauth.models import Identity
from dashauth.output import get_output


class SignInUI(Protocol):
    def show_sign_in(self) -> None: ...

    def hide_sign_in(self) -> None: ...

    def show_error(self, message: str) -> None: ...

    def show_signed_in(self, identity: Identity) -> None: ...


class NullSignInUI:
    """A :class:`SignInUI` that does nothing, for headless embedding."""

    def show_sign_in(self) -> None:
        pass

    def hide_sign_in(self) -> None:
        pass

    def show_error(self, message: str) -> None:
        pass

    def show_signed_in(self, identity: Identity) -> None:
        pass


class TerminalSignInUI:
    """A :class:`SignInUI` for the CLI, writing to stderr through the output manager."""

    def __init__(self, login_hint: str = "dashauth login") -> None:
        self._login_hint = login_hint

    def show_sign_in(self) -> None:
        get_output().info("Not signed in.")
        get_output().suggest(f"Sign in: {self._login_hint}")

    def hide_sign_in(self) -> None:
        pass

    def show_error(self, message: str) -> None:
        get_output().error(f"Sign-in failed: {message}")
        get_output().suggest(f"Try again: {self._login_hint}")

    def show_signed_in(self, identity: Identity) -> None:
        get_output().success(f"Signed in as {identity.name} <{identity.email}>")
