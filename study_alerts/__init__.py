"""Per-student task and alert scheduling engine."""
