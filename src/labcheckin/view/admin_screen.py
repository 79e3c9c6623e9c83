"""Browse and delete registered users and lab sessions."""

from typing import Any, Optional

import textual
from textual import app, binding, containers, screen, widgets

from labcheckin.features import validators
from labcheckin.model import results, service
import labcheckin.view
from labcheckin.view import confirm_dialogs


PAGE_SIZE = 20

USER_COLUMNS = ["ID", "Code", "Name", "Profile", "School", "Registered", "Synced"]
USER_FIELDS = ["id", "code", "name", "profile", "school", "registered_at", "synced"]
SESSION_COLUMNS = [
    "ID", "Code", "Activity", "Duration", "Station", "Date", "Start", "Synced"
]
SESSION_FIELDS = [
    "id", "code", "activity", "duration", "station", "session_date", "start_time",
    "synced",
]


class AdminScreen(screen.Screen):
    """Paged listings of users and sessions with filters and deletes."""

    CSS_PATH = labcheckin.view.CSS_FOLDER / "admin_screen.tcss"
    BINDINGS = [
        binding.Binding("escape", "app.pop_screen", "Back to Check-In", show=True),
    ]

    service: service.CheckinService
    _pages: dict[str, int]
    """Current page of each listing, keyed by 'users' or 'sessions'."""
    _records: dict[str, dict[str, dict[str, Any]]]
    """Records shown in each table, keyed by row key."""
    _selected: dict[str, Optional[str]]
    """Row key of the selected record in each table."""

    def __init__(self, checkin_service: service.CheckinService) -> None:
        super().__init__()
        self.service = checkin_service
        self._pages = {"users": 1, "sessions": 1}
        self._records = {"users": {}, "sessions": {}}
        self._selected = {"users": None, "sessions": None}

    def compose(self) -> app.ComposeResult:
        """Build the admin screen's user interface."""
        yield widgets.Header()
        with widgets.TabbedContent(initial="users-tab"):
            with widgets.TabPane("Users", id="users-tab"):
                with containers.HorizontalGroup(classes="filters"):
                    yield widgets.Input(placeholder="Code", id="users-code")
                    yield widgets.Button("Filter", id="users-filter")
                yield widgets.DataTable(zebra_stripes=True, id="users-table")
                with containers.HorizontalGroup(classes="pager"):
                    yield widgets.Button("< Prev", id="users-prev")
                    yield widgets.Label("", id="users-page")
                    yield widgets.Button("Next >", id="users-next")
                    yield widgets.Button(
                        "Delete Selected",
                        variant="error",
                        id="users-delete",
                        disabled=True,
                        tooltip="Delete the user and all of the user's sessions.",
                    )
            with widgets.TabPane("Sessions", id="sessions-tab"):
                with containers.HorizontalGroup(classes="filters"):
                    yield widgets.Input(placeholder="Code", id="sessions-code")
                    yield widgets.Input(
                        placeholder="From YYYY-MM-DD",
                        id="sessions-from",
                        validators=[validators.DateValidator()],
                    )
                    yield widgets.Input(
                        placeholder="To YYYY-MM-DD",
                        id="sessions-to",
                        validators=[validators.DateValidator()],
                    )
                    yield widgets.Button("Filter", id="sessions-filter")
                yield widgets.DataTable(zebra_stripes=True, id="sessions-table")
                with containers.HorizontalGroup(classes="pager"):
                    yield widgets.Button("< Prev", id="sessions-prev")
                    yield widgets.Label("", id="sessions-page")
                    yield widgets.Button("Next >", id="sessions-next")
                    yield widgets.Button(
                        "Delete Selected",
                        variant="error",
                        id="sessions-delete",
                        disabled=True,
                    )
        yield widgets.Static(id="status-message", classes="status")
        yield widgets.Footer()

    def on_mount(self) -> None:
        """Initialize the datatable widgets."""
        users_table = self.query_one("#users-table", widgets.DataTable)
        users_table.cursor_type = "row"
        users_table.add_columns(*USER_COLUMNS)
        sessions_table = self.query_one("#sessions-table", widgets.DataTable)
        sessions_table.cursor_type = "row"
        sessions_table.add_columns(*SESSION_COLUMNS)
        self.load_users()
        self.load_sessions()

    def update_status(self, message: str) -> None:
        self.query_one("#status-message", widgets.Static).update(message)

    # Loading
    # -------
    @textual.work(exclusive=True, group="users")
    async def load_users(self) -> None:
        """Load the current page of users into the datatable widget."""
        code = self.query_one("#users-code", widgets.Input).value.strip()
        result = await self.service.admin_list_users(
            self._pages["users"], PAGE_SIZE, {"code": code or None}
        )
        self._show_page("users", result, USER_FIELDS)

    @textual.work(exclusive=True, group="sessions")
    async def load_sessions(self) -> None:
        """Load the current page of sessions into the datatable widget."""
        try:
            filters = {
                "code": self.query_one("#sessions-code", widgets.Input).value.strip()
                or None,
                "date_from": validators.to_iso_date(
                    self.query_one("#sessions-from", widgets.Input).value
                ),
                "date_to": validators.to_iso_date(
                    self.query_one("#sessions-to", widgets.Input).value
                ),
            }
        except (ValueError, OverflowError) as err:
            self.update_status(labcheckin.view.error(f"Invalid date: {err}"))
            return
        result = await self.service.admin_list_sessions(
            self._pages["sessions"], PAGE_SIZE, filters
        )
        self._show_page("sessions", result, SESSION_FIELDS)

    def _show_page(
        self, listing: str, result: results.PageResult, fields: list[str]
    ) -> None:
        """Fill a table from a page of records."""
        self.post_message(labcheckin.view.ModeChanged())
        if not result.success:
            self.update_status(
                labcheckin.view.error(f"Unable to load {listing}: {result.message}")
            )
            return
        table = self.query_one(f"#{listing}-table", widgets.DataTable)
        table.clear()
        self._records[listing] = {}
        self._select(listing, None)
        for record in result.data:
            key = str(record.get("id"))
            self._records[listing][key] = record
            table.add_row(
                *[self._cell(record.get(field)) for field in fields], key=key
            )
        last_page = max(1, -(-result.total // PAGE_SIZE))
        page = self._pages[listing]
        self.query_one(f"#{listing}-page", widgets.Label).update(
            f"Page {page} of {last_page} ({result.total} {listing}, {result.mode})"
        )
        self.query_one(f"#{listing}-prev", widgets.Button).disabled = page <= 1
        self.query_one(f"#{listing}-next", widgets.Button).disabled = page >= last_page
        self.update_status(
            labcheckin.view.success(f"Loaded {len(result.data)} {listing}.")
        )

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "yes" if value else "no"
        return str(value)

    def _reload(self, listing: str) -> None:
        if listing == "users":
            self.load_users()
        else:
            self.load_sessions()

    # Filters and paging
    # ------------------
    @textual.on(widgets.Button.Pressed, "#users-filter")
    @textual.on(widgets.Input.Submitted, "#users-code")
    def filter_users(self) -> None:
        self._pages["users"] = 1
        self.load_users()

    @textual.on(widgets.Button.Pressed, "#sessions-filter")
    @textual.on(widgets.Input.Submitted, "#sessions-code")
    @textual.on(widgets.Input.Submitted, "#sessions-from")
    @textual.on(widgets.Input.Submitted, "#sessions-to")
    def filter_sessions(self) -> None:
        self._pages["sessions"] = 1
        self.load_sessions()

    @textual.on(widgets.Button.Pressed, ".pager Button")
    def change_page(self, event: widgets.Button.Pressed) -> None:
        """Handle the prev, next and delete buttons of either listing."""
        listing, _, action = (event.button.id or "").partition("-")
        match action:
            case "prev":
                self._pages[listing] = max(1, self._pages[listing] - 1)
                self._reload(listing)
            case "next":
                self._pages[listing] += 1
                self._reload(listing)
            case "delete":
                self.confirm_delete(listing)

    # Selection and deletes
    # ---------------------
    def on_data_table_row_selected(self, event: widgets.DataTable.RowSelected) -> None:
        """Select a row in either datatable."""
        listing = "users" if event.data_table.id == "users-table" else "sessions"
        self._select(listing, event.row_key.value)

    def _select(self, listing: str, key: Optional[str]) -> None:
        self._selected[listing] = key
        self.query_one(f"#{listing}-delete", widgets.Button).disabled = key is None

    def confirm_delete(self, listing: str) -> None:
        """Ask for confirmation, then delete the selected record."""
        key = self._selected[listing]
        if key is None:
            return
        record = self._records[listing][key]
        if listing == "users":
            description = f"{record.get('name')} ({record.get('code')})"
            detail = "All of this user's sessions will be deleted too."
        else:
            description = f"Session {record.get('id')} of {record.get('code')}"
            detail = f"{record.get('session_date')} {record.get('start_time')}"

        def on_dialog_closed(confirmed: bool | None) -> None:
            if confirmed:
                self.delete_record(listing, record)

        self.app.push_screen(
            confirm_dialogs.DeleteConfirmDialog(description, detail),
            callback=on_dialog_closed,
        )

    @textual.work(exclusive=True, group="delete")
    async def delete_record(self, listing: str, record: dict[str, Any]) -> None:
        if listing == "users":
            result = await self.service.admin_delete_user(id=record.get("id"))
        else:
            result = await self.service.admin_delete_session(id=record.get("id"))
        if result.success:
            self.update_status(labcheckin.view.success(f"Deleted {listing[:-1]}."))
            self.load_users()
            self.load_sessions()
        else:
            self.update_status(
                labcheckin.view.error(
                    f"Unable to delete {listing[:-1]}: {result.message or 'not found'}"
                )
            )
