"""JSON-RPC protocol layer: codec, validation, dispatch."""
