"""Desktop-shell adapters (gsettings, gnome-extensions)."""
