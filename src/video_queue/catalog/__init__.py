"""Photo group and photo metadata used by the queue."""
