from .notes import Note, NoteStore, NoteSyncError
from .presets import PRESETS, AppPreset, open_collection

__all__ = ["AppPreset", "Note", "NoteStore", "NoteSyncError", "PRESETS", "open_collection"]
