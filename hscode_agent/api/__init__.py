"""HTTP surface of the HS code analysis agent."""
