"""
OncoVoice Engine - Clinical Discussion Intelligence

A FastAPI service that transcribes recorded breakout-session discussions,
analyzes them against topic reference documents with an LLM, narrates the
critique and publishes per-team results to a live dashboard.
"""

__version__ = "1.0.0"
