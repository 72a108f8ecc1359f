"""ticketgate: QR ticket scanning and validation controller."""

__version__ = "0.1.0"
