"""Turn orchestration."""
