"""HTTP layer: SCIM blueprint, health probes and error handlers."""
