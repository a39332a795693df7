"""Feature modules composing the reindexing pipeline."""
