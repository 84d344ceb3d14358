"""Reading, indexing, validating and splitting MGF spectrum files."""
