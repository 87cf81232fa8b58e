"""Domain core: ORM models, value types, Protocols, lifecycles and services."""
