"""Item model, viewport filtering and markers."""
