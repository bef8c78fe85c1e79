"""Terraform workspace files, operation tracking, CLI failure errors and shared provider scheduling."""

__version__ = "0.1.0"