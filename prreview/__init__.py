"""
AI Pull Request Reviewer

Reviews GitHub pull requests with an LLM when webhook events arrive.
"""

__version__ = "0.1.0"
