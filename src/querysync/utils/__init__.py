"""Shared utilities for querysync."""
