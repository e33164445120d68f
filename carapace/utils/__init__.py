"""Utility functions for carapace."""
