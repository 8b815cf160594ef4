"""Foundation: configuration and error taxonomy."""
