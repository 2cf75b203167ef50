"""Microphone noise monitor with push alerts."""
