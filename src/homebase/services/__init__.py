"""Service layer for Homebase: the note store and its write debouncer."""
