"""
Services package for FocusFlow Monitor.

This package contains service modules for external collaborators:
- Azure AI Foundry: chat completions (report generation)
- Session report: prompt building, response parsing, background report requests
"""
