"""Command implementations for the sketchtree CLI."""
