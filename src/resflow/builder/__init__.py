"""
resflow Builder

Graph data model and editing: typed nodes and edges, the GraphStore, topology
validation, output-to-input adapters, the clipboard, edit commands, workflow
documents and presets.
"""
