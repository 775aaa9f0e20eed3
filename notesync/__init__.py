"""NoteSync: per-repository sync jobs feeding a searchable index."""

__version__ = "0.1.0"
