"""Core models, rules and errors of the enrichment engine."""
