"""Main entry point for the lab check-in kiosk."""

from typing import Optional

import textual
from textual import app, reactive

from labcheckin import config
from labcheckin.model import service
import labcheckin.view
from labcheckin.view import admin_screen, checkin_screen, pw_dialog


CONNECTION_GROUP = "connection"
"""Worker group for startup, health checks and syncs. One runs at a time."""


class KioskApp(app.App):
    """Kiosk application. Owns the service and the connection indicator."""

    CSS_PATH = labcheckin.view.CSS_FOLDER / "main.tcss"
    TITLE = "Lab Check-In"
    BINDINGS = [
        ("f2", "admin", "Admin"),
        ("f5", "sync", "Sync Now"),
    ]

    settings: config.Settings
    service: service.CheckinService
    """The only object the screens use to read or write data."""
    connected: reactive.reactive[Optional[bool]] = reactive.reactive(
        None, always_update=True
    )

    def __init__(
        self,
        settings: config.Settings,
        checkin_service: Optional[service.CheckinService] = None,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.service = checkin_service or service.CheckinService(settings)

    def on_mount(self) -> None:
        """Show the check-in screen, connect and poll the connection state."""
        self.sub_title = "Connecting..."
        self.push_screen(checkin_screen.CheckinScreen(self.service, self.settings))
        self.startup()
        self.set_interval(self.settings.ui_health_interval, self.poll_connection)

    async def on_unmount(self) -> None:
        await self.service.close()

    @textual.work(exclusive=False, group=CONNECTION_GROUP)
    async def startup(self) -> None:
        await self.service.startup()
        self.update_mode()

    def connection_busy(self) -> bool:
        """True while a startup, health check or sync worker is unfinished."""
        return any(
            worker.group == CONNECTION_GROUP and not worker.is_finished
            for worker in self.workers
        )

    def poll_connection(self) -> None:
        """Timer callback. Skips the tick if the last one is still running."""
        if not self.connection_busy():
            self.check_connection()

    @textual.work(exclusive=False, group=CONNECTION_GROUP)
    async def check_connection(self) -> None:
        """Periodic health check. Reconnects and syncs when the server returns."""
        await self.service.check_connection()
        self.update_mode()

    def update_mode(self) -> None:
        self.connected = self.service.connection_status().connected

    def on_mode_changed(self, message: labcheckin.view.ModeChanged) -> None:
        self.update_mode()

    def watch_connected(self, connected: Optional[bool]) -> None:
        """Show online/local mode in the header of every screen."""
        if connected is None:
            return
        if connected:
            self.sub_title = f"Online: {self.service.connection_status().endpoint}"
        else:
            self.sub_title = "Local mode: data is saved on this computer"

    def action_admin(self) -> None:
        """Ask for the admin password, then open the admin screen."""

        def _open_admin(success: bool | None) -> None:
            if success:
                self.push_screen(admin_screen.AdminScreen(self.service))

        self.push_screen(
            pw_dialog.PasswordPrompt(self.settings.admin_password_hash),
            callback=_open_admin,
        )

    def action_sync(self) -> None:
        """Push cached records to the central database now."""
        if self.connection_busy():
            self.notify("A connection check is running, try again shortly.")
            return
        self.sync_now()

    @textual.work(exclusive=False, group=CONNECTION_GROUP)
    async def sync_now(self) -> None:
        result = await self.service.sync_pending()
        self.update_mode()
        self.notify(result.message, severity="information" if result.success else "error")

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Only open the admin screen from the check-in screen."""
        if action == "admin":
            return isinstance(self.screen, checkin_screen.CheckinScreen)
        return True
