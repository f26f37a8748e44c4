"""System package and service adapters (apt, flatpak, systemd, fwupd)."""
