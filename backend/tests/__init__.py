"""CivicTrack test package."""
