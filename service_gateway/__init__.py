"""World Monitor gateway service."""
