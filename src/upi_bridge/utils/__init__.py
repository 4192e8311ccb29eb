"""Utility helpers for the UPI bridge."""
