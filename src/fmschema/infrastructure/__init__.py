"""Infrastructure layer — filesystem discovery, schema and template loading.

This layer performs the I/O the domain core never does. It may import
from domain (models, result types, pure parsers) but never from
services, commands, or output.
"""
