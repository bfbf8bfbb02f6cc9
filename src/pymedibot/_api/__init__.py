"""Record-store endpoint modules."""
