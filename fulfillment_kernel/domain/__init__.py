"""Pure domain layer: enums, state machine, DTOs, clock. ZERO I/O."""
