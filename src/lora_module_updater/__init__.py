"""Host-side driver for a LoRa gateway module and its OTA firmware updates."""

__version__ = "0.1.0"
