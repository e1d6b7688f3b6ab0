"""Relay a Heroku application's log stream to a Discord channel."""

__version__ = "0.1.0"
