"""wsmigrate — capture, normalize and reconcile a desktop workstation."""

__version__ = "0.1.0"
