"""Service implementations for the wallet aggregation domain."""
