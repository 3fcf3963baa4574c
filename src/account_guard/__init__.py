"""account-guard - account-security core: devices, verification codes, relay auth."""

__version__ = "0.1.0"
