"""Data models for covwatch."""
