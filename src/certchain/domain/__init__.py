"""Domain layer — value objects, call context, trust anchors and ports."""
