"""Service layer: one function per route operation, plus the relay pieces
(attachment assembly, pricing, usage, the streaming relay) they share."""
