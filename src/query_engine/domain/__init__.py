"""Domain layer: value types, query and plan entities, and the services
that bind and evaluate queries."""
