"""
Answer Visibility: scheduled brand-visibility tracking for AI-generated answers.

Runs stored prompts against language-model providers, extracts brand and
competitor mentions plus citations from the answers, turns them into a
0-100 visibility score and schedules the work under per-tenant budget and
concurrency limits.
"""

__version__ = "0.1.0"
