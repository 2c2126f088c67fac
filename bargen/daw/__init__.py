"""Editor-side collaborators: ports and a MIDI-file-backed project."""
