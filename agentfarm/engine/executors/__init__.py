"""Step executors, one module per action family."""
