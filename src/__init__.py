"""
LFO - Local-First Orchestrator

An OpenAI-compatible gateway that serves chat completions from an on-device
model when it is confident enough, and escalates to a cloud model when the
prompt is too large or the local model is unsure.
"""

__version__ = "0.1.0"
__author__ = "LFO"
