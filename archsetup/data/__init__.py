"""Static data shipped with the package (the built-in plan)."""
