"""Event handlers for Pixia.

Handlers listen to bus events and react asynchronously.
Each handler registers itself on specific event types during __init__.
"""

from pixia.handlers.title_summarizer import TitleSummarizer

__all__ = ["TitleSummarizer"]
