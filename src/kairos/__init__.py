"""Kairos: learning analytics over spaced-repetition review logs."""
