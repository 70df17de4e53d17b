"""qctrack storage backends and the versioned persistence adapter."""
