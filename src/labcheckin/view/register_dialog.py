"""Dialog for registering a new lab user."""

from typing import Any, Optional

from textual import app, containers, screen, widgets

import labcheckin.view
from labcheckin.features import validators
from labcheckin.model import users_mod


class RegisterDialog(screen.ModalScreen[Optional[dict[str, Any]]]):
    """Collect a new user's details.

    Dismisses with a dict of register_user() arguments, or None on cancel.
    """

    CSS_PATH = labcheckin.view.CSS_FOLDER / "modal.tcss"

    code: str
    """Code typed on the check-in screen, if any."""
    schools: list[str]

    def __init__(self, code: str = "", schools: Optional[list[str]] = None) -> None:
        self.code = code
        self.schools = schools or []
        super().__init__()

    def compose(self) -> app.ComposeResult:
        with containers.Vertical(id="register-dialog", classes="modal-dialog"):
            yield widgets.Label("Register New User", classes="emphasis")
            yield widgets.Select(
                [(str(profile), str(profile)) for profile in users_mod.Profile],
                prompt="Profile",
                id="r-profile",
            )
            yield widgets.Input(
                value=self.code,
                placeholder="Code",
                id="r-code",
                validators=[validators.NotEmpty()],
            )
            yield widgets.Input(
                placeholder="Full Name",
                id="r-name",
                validators=[validators.NotEmpty()],
            )
            yield widgets.Select(
                [(school, school) for school in self.schools],
                prompt="School",
                id="r-school",
            )
            yield widgets.Static("", id="register-error")
            with containers.Horizontal(classes="dialog-row"):
                yield widgets.Button("Register", variant="primary", id="save-user")
                yield widgets.Button("Back", id="cancel-user")

    def on_mount(self) -> None:
        self.query_one("#r-profile", widgets.Select).focus()

    def on_button_pressed(self, event: widgets.Button.Pressed) -> None:
        if event.button.id == "save-user":
            self.save()
        elif event.button.id == "cancel-user":
            self.dismiss(None)

    def save(self) -> None:
        """Dismiss with the entered data if every field is filled in."""
        profile = self.query_one("#r-profile", widgets.Select)
        school = self.query_one("#r-school", widgets.Select)
        code_input = self.query_one("#r-code", widgets.Input)
        name_input = self.query_one("#r-name", widgets.Input)
        inputs_valid = all(
            validators.NotEmpty().validate(widget.value).is_valid
            for widget in (code_input, name_input)
        )
        if profile.is_blank() or school.is_blank() or not inputs_valid:
            self.query_one("#register-error", widgets.Static).update(
                labcheckin.view.error("Please complete all fields.")
            )
            return
        self.dismiss(
            {
                "code": code_input.value.strip(),
                "name": name_input.value.strip(),
                "profile": str(profile.value),
                "school": str(school.value),
            }
        )
