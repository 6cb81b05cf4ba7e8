"""Map surface, resource lifecycle and playback."""
