"""Confirmation Dialogs."""

from textual import app, containers, screen, widgets

import labcheckin.view


class DeleteConfirmDialog(screen.ModalScreen[bool]):
    """Ask before deleting a user or a session."""

    CSS_PATH = labcheckin.view.CSS_FOLDER / "modal.tcss"

    description: str
    """What will be deleted, shown in bold."""
    detail: str
    """Extra line under the description."""

    def __init__(self, description: str, detail: str = "") -> None:
        self.description = description
        self.detail = detail
        super().__init__()

    def compose(self) -> app.ComposeResult:
        """Layout the dialog screen."""
        with containers.Vertical(id="delete-dialog", classes="modal-dialog"):
            yield widgets.Label("[bold red]Confirm Deletion[/bold red]")
            yield widgets.Static()
            yield widgets.Label("Are you sure you want to delete:")
            yield widgets.Label(f"[bold]{self.description}[/bold]")
            if self.detail:
                yield widgets.Label(self.detail)
            yield widgets.Static()
            yield widgets.Label("[yellow]This action cannot be undone![/yellow]")
            yield widgets.Static()
            with containers.Horizontal(classes="dialog-row"):
                yield widgets.Button("Delete", variant="error", id="confirm-delete")
                yield widgets.Button("Cancel", variant="primary", id="cancel-delete")

    def on_button_pressed(self, event: widgets.Button.Pressed) -> None:
        if event.button.id == "confirm-delete":
            self.dismiss(True)
        elif event.button.id == "cancel-delete":
            self.dismiss(False)
