"""Connection broker core: tenancy, keys, OAuth flow, handoff, connection store, token broker."""
