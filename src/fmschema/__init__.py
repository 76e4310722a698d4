"""fmschema — schema-directed frontmatter aggregation."""

__version__ = "0.4.0"
