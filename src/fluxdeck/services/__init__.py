"""Service layer on top of the integrations."""
