"""HTTP transport for docsrag."""
