"""Settings loaded from config/settings.yaml."""
