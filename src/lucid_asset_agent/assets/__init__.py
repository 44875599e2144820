"""Asset entity, type handlers and the reconciling manager."""
