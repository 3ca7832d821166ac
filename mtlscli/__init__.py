"""mtlscli - command-line TLS client for testing mutual-authentication setups."""
