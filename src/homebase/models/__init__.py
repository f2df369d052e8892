"""Data models for Homebase."""
