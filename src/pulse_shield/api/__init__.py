"""HTTP surface of the defense core."""
