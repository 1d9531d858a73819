"""Pure domain layer: value objects, state machines, clock."""
