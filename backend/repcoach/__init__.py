"""Exercise rep counting and form feedback from pose landmarks."""

__version__ = "1.0.0"
