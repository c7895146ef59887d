"""Receive Falco events over HTTP, enrich them and decide which outputs they go to."""

__version__ = "0.1.0"