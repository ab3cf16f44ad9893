"""Bootstrap a MongoDB node into its primary/secondary/arbiter replica set role."""

__version__ = "1.0.0"
