"""Services: remote client, diff engine and edit session."""
