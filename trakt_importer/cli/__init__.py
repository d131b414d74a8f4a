"""Command line entry points for the Trakt importer."""
