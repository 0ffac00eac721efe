"""Framework-independent metrics core."""
