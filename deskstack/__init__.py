"""deskstack — declarative desktop provisioning for Ubuntu workstations."""

__version__ = "0.1.0"
