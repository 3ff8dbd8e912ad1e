"""Domain layer: model, ports and the synchronisation core."""
