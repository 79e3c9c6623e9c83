"""Prompt user for the admin password."""
import hashlib
from typing import Optional

from textual import app, containers, screen, widgets

import labcheckin.view


class PasswordPrompt(screen.ModalScreen[bool]):
    """A modal screen to ask for the admin password."""
    CSS_PATH = labcheckin.view.CSS_FOLDER / "modal.tcss"

    password_hash: Optional[str]
    """SHA256 hash of the admin password. None locks the admin screen."""

    def __init__(self, password_hash: Optional[str]) -> None:
        super().__init__()
        self.password_hash = password_hash

    def compose(self) -> app.ComposeResult:
        """Build the password dialog box."""
        with containers.Vertical(id="password-dialog", classes="modal-dialog"):
            yield widgets.Label("Enter Admin Password")
            yield widgets.Input(password=True, id="password-input")
            yield widgets.Static("", id="password-error")
            with containers.Horizontal(id="password-actions", classes="dialog-row"):
                yield widgets.Button("Submit", variant="primary", id="submit-password")
                yield widgets.Button("Cancel", id="cancel-password")

    def on_mount(self) -> None:
        """Put focus on the input box."""
        self.query_one("#password-input", widgets.Input).focus()

    def on_button_pressed(self, event: widgets.Button.Pressed) -> None:
        if event.button.id == "submit-password":
            self.check_password()
        elif event.button.id == "cancel-password":
            self.dismiss(False)

    def on_input_submitted(self, event: widgets.Input.Submitted) -> None:
        self.check_password()

    def check_password(self) -> None:
        password = self.query_one("#password-input", widgets.Input).value
        hashed_password = hashlib.sha256(password.encode()).hexdigest()
        error_msg = self.query_one("#password-error", widgets.Static)
        if self.password_hash is not None and hashed_password == self.password_hash:
            self.dismiss(True)
        else:
            error_msg.update("[bold red]Incorrect Password[/]")
            self.query_one("#password-input", widgets.Input).value = ""
