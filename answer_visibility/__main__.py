"""
Entry point for running Answer Visibility as a module.

Enables execution via:
    python -m answer_visibility [command] [options]

This is equivalent to running the installed CLI:
    answer-visibility [command] [options]

Examples:
    python -m answer_visibility --help
    python -m answer_visibility tick --config visibility.config.yaml
    python -m answer_visibility demo
"""

from answer_visibility.cli import app

if __name__ == "__main__":
    app()
