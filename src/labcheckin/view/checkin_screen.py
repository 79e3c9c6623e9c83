"""Sign users in to a lab station."""

from typing import Any, Optional

import textual
from textual import app, binding, containers, reactive, screen, widgets

from labcheckin import config
from labcheckin.features import validators
from labcheckin.model import service, users_mod
import labcheckin.view
from labcheckin.view import register_dialog


CUSTOM_DURATION = "custom"


class CheckinScreen(screen.Screen):
    """Code entry, session form and registration."""

    BINDINGS = [
        binding.Binding("escape", "cancel", "Clear Form", show=True),
    ]

    service: service.CheckinService
    settings: config.Settings
    current_user: Optional[users_mod.User]
    """User found by the last code lookup."""
    message = reactive.reactive("")

    def __init__(
        self, checkin_service: service.CheckinService, settings: config.Settings
    ) -> None:
        super().__init__()
        self.service = checkin_service
        self.settings = settings
        self.current_user = None

    def compose(self) -> app.ComposeResult:
        """Build the check-in form."""
        yield widgets.Header()
        with containers.VerticalGroup(id="checkin-form", classes="outer"):
            yield widgets.Label("Sign In", classes="emphasis")
            with containers.HorizontalGroup():
                yield widgets.Input(
                    placeholder="Enter your code",
                    id="checkin-code",
                    validators=[validators.NotEmpty()],
                )
                yield widgets.Button("Continue", variant="primary", id="checkin-lookup")
                yield widgets.Button("Register", id="checkin-register")
        with containers.VerticalGroup(id="session-form", classes="outer"):
            yield widgets.Label("", id="session-user", classes="emphasis")
            yield widgets.Input(
                placeholder="Describe your activity",
                id="session-activity",
                validators=[validators.NotEmpty()],
            )
            yield widgets.Select(
                [(duration, duration) for duration in self.settings.durations]
                + [("Other (custom)", CUSTOM_DURATION)],
                prompt="Select the time",
                id="session-duration",
            )
            yield widgets.Input(
                placeholder="Enter the time (e.g. 75 minutes)",
                id="session-custom-duration",
            )
            yield widgets.Select(
                [
                    (f"PC{number}", f"PC{number}")
                    for number in range(1, self.settings.station_count + 1)
                ],
                prompt="Select the station",
                id="session-station",
            )
            with containers.HorizontalGroup():
                yield widgets.Button(
                    "Start Session", variant="success", id="session-start"
                )
                yield widgets.Button("Cancel", id="session-cancel")
        yield widgets.Label("", id="checkin-message", classes="app-alert")
        yield widgets.Footer()

    def on_mount(self) -> None:
        self.query_one("#session-form").display = False
        self.query_one("#session-custom-duration").display = False
        self.query_one("#checkin-code", widgets.Input).focus()

    def watch_message(self) -> None:
        self.query_one("#checkin-message", widgets.Label).update(self.message)

    def show_result(self, success: bool, message: str) -> None:
        """Display the outcome of an operation and refresh the mode indicator."""
        if success:
            self.message = labcheckin.view.success(message)
        else:
            self.message = labcheckin.view.error(message)
        self.post_message(labcheckin.view.ModeChanged())

    # Code lookup
    # -----------
    @textual.on(widgets.Button.Pressed, "#checkin-lookup")
    @textual.on(widgets.Input.Submitted, "#checkin-code")
    async def lookup_user(self) -> None:
        """Find the user and open the session form."""
        code = self.query_one("#checkin-code", widgets.Input).value.strip()
        if not code:
            self.show_result(False, "Please enter your code.")
            return
        result = await self.service.find_user_by_code(code)
        self.post_message(labcheckin.view.ModeChanged())
        if result.found and result.user is not None:
            self.current_user = result.user
            self.query_one("#session-user", widgets.Label).update(
                f"Welcome, {result.user.name}"
            )
            self.query_one("#session-form").display = True
            self.query_one("#session-activity", widgets.Input).focus()
            self.message = ""
        elif result.needs_registration:
            self.show_result(False, f"{result.error} Please register first.")
            self.action_register()
        else:
            self.show_result(False, result.error or "Unable to look up your code.")

    # Registration
    # ------------
    @textual.on(widgets.Button.Pressed, "#checkin-register")
    def action_register(self) -> None:
        """Show the registration dialog."""
        code = self.query_one("#checkin-code", widgets.Input).value.strip()
        self.app.push_screen(
            register_dialog.RegisterDialog(code, self.settings.schools),
            callback=self._on_register_closed,
        )

    def _on_register_closed(self, data: Optional[dict[str, Any]]) -> None:
        if data is not None:
            self.register_user(data)

    @textual.work(exclusive=True, group="write")
    async def register_user(self, data: dict[str, Any]) -> None:
        result = await self.service.register_user(**data)
        self.show_result(result.success, result.message)
        if result.redirect_to_login:
            code_input = self.query_one("#checkin-code", widgets.Input)
            code_input.value = data["code"]
            code_input.focus()

    # Session
    # -------
    @textual.on(widgets.Select.Changed, "#session-duration")
    def on_duration_changed(self, event: widgets.Select.Changed) -> None:
        custom = self.query_one("#session-custom-duration", widgets.Input)
        custom.display = event.value == CUSTOM_DURATION
        if custom.display:
            custom.focus()

    @textual.on(widgets.Button.Pressed, "#session-start")
    async def start_session(self) -> None:
        """Record the session for the user found by the last lookup."""
        if self.current_user is None:
            return
        activity = self.query_one("#session-activity", widgets.Input).value.strip()
        duration_select = self.query_one("#session-duration", widgets.Select)
        station_select = self.query_one("#session-station", widgets.Select)
        duration = None
        if not duration_select.is_blank():
            duration = str(duration_select.value)
            if duration == CUSTOM_DURATION:
                duration = self.query_one(
                    "#session-custom-duration", widgets.Input
                ).value.strip()
        if not activity or not duration or station_select.is_blank():
            self.show_result(False, "Please complete all fields.")
            return
        result = await self.service.start_session(
            self.current_user.code, activity, duration, str(station_select.value)
        )
        self.show_result(result.success, result.message)
        if result.success:
            self.reset_form()

    @textual.on(widgets.Button.Pressed, "#session-cancel")
    def action_cancel(self) -> None:
        self.reset_form()
        self.message = ""

    def reset_form(self) -> None:
        """Clear every field and go back to the code entry."""
        self.current_user = None
        self.query_one("#session-activity", widgets.Input).value = ""
        self.query_one("#session-custom-duration", widgets.Input).value = ""
        self.query_one("#session-custom-duration").display = False
        self.query_one("#session-duration", widgets.Select).clear()
        self.query_one("#session-station", widgets.Select).clear()
        self.query_one("#session-form").display = False
        code_input = self.query_one("#checkin-code", widgets.Input)
        code_input.value = ""
        code_input.focus()
