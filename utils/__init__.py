"""Pure helpers: interpolation, conditions, sanitizing, logging setup."""
