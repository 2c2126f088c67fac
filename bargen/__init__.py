"""bargen: bar-range MIDI generation client for an async job backend."""
