"""otpgate — TOTP second factor: secrets, codes, and the enable/verify/disable lifecycle."""

__version__ = "0.1.0"
