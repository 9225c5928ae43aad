"""End-to-end tests that launch real child processes."""
