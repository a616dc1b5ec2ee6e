"""
Errors raised while loading a matrix declaration.

Run-time outcomes (variant failure, coverage failure, upload failure) are
not exceptions: they are recorded as reason enums in the reports.
"""


class MatrixConfigError(ValueError):
    """The declared matrix cannot be executed as written."""
