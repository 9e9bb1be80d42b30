"""HTTP API for the Mideeye application."""
