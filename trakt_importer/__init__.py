"""Trakt.tv import provider: device authorization, rate-limited sync and record normalization."""

__version__ = "1.0.0"
