"""GitHub pull request review assignment and merge-gate bot."""

__version__ = "0.1.0"
