"""Campaign validation, compilation and response validation services."""
