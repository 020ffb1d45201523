"""
foldwise.reporting — Formatting and export of CV results.

Modules:
  formatters — Plain-text summaries of CV results for the CLI.
  export     — JSON export of result dicts.
"""
