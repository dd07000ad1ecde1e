"""Core primitives: trigger clock, graph store, executor contracts."""
