"""Boot-manager adapters."""
