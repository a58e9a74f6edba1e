"""Domain models: pure simulation state machines with no I/O."""
