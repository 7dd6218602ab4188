"""tsmanifests: aggregate the default exports of TypeScript modules into one JSON list."""

__version__ = "0.1.0"
