"""Form helpers shared by the kiosk screens."""
